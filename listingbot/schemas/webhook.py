from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from listingbot.schemas.telegram import TelegramUpdate
from listingbot.services.errors import ValidationError
from listingbot.services.idempotency import build_event_id


class AttachmentKind(str, Enum):
    IMAGE = "image"
    DOCUMENT = "document"
    VOICE = "voice"


class Attachment(BaseModel):
    kind: AttachmentKind
    ref: str  # telegram file_id
    mime_type: Optional[str] = None
    file_name: Optional[str] = None


class InboundEvent(BaseModel):
    event_id: str
    conversation_id: str
    text: Optional[str] = None
    attachment: Optional[Attachment] = None


def inbound_event_from_update(update: TelegramUpdate) -> InboundEvent:
    """Normalise a Telegram update; raises ValidationError when nothing actionable is present."""
    message = update.effective_message
    if message is None:
        raise ValidationError("update carries no message")
    if message.sent_by_bot:
        raise ValidationError("message sent by a bot")

    attachment = None
    largest = message.largest_photo()
    if largest is not None:
        attachment = Attachment(kind=AttachmentKind.IMAGE, ref=largest.file_id, mime_type="image/jpeg")
    elif message.document:
        attachment = Attachment(
            kind=AttachmentKind.DOCUMENT,
            ref=message.document.file_id,
            mime_type=message.document.mime_type,
            file_name=message.document.file_name,
        )
    elif message.voice:
        attachment = Attachment(kind=AttachmentKind.VOICE, ref=message.voice.file_id, mime_type=message.voice.mime_type)
    elif message.audio:
        attachment = Attachment(kind=AttachmentKind.VOICE, ref=message.audio.file_id, mime_type=message.audio.mime_type)

    text = message.body
    if attachment is None and not (text or "").strip():
        raise ValidationError("message has neither text nor a supported attachment")

    event_id = build_event_id(update.update_id, message.chat.id, message.message_id)
    return InboundEvent(
        event_id=event_id,
        conversation_id=str(message.chat.id),
        text=text,
        attachment=attachment,
    )


def parse_inbound_event(payload: Any) -> InboundEvent:
    if not isinstance(payload, dict):
        raise ValidationError("payload is not a JSON object")
    try:
        update = TelegramUpdate(**payload)
    except (PydanticValidationError, TypeError) as exc:
        raise ValidationError(f"invalid telegram update: {exc}") from exc
    return inbound_event_from_update(update)
