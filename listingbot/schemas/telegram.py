"""Subset of the Telegram Bot API update payload the listing bot reads."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class TelegramUser(BaseModel):
    id: int
    is_bot: bool = False
    first_name: str
    username: Optional[str] = None
    language_code: Optional[str] = None


class TelegramChat(BaseModel):
    id: int
    type: str  # private, group, supergroup, channel


class TelegramFile(BaseModel):
    file_id: str
    file_unique_id: str
    file_size: Optional[int] = None


class TelegramPhotoSize(TelegramFile):
    width: int
    height: int


class TelegramDocument(TelegramFile):
    file_name: Optional[str] = None
    mime_type: Optional[str] = None


class TelegramAudio(TelegramFile):
    duration: int
    file_name: Optional[str] = None
    mime_type: Optional[str] = None


class TelegramVoice(TelegramFile):
    duration: int
    mime_type: Optional[str] = None


class TelegramMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message_id: int
    date: int
    chat: TelegramChat
    from_user: Optional[TelegramUser] = Field(default=None, alias="from")
    text: Optional[str] = None
    caption: Optional[str] = None
    media_group_id: Optional[str] = None  # set on every photo of an album
    photo: Optional[list[TelegramPhotoSize]] = None
    document: Optional[TelegramDocument] = None
    audio: Optional[TelegramAudio] = None
    voice: Optional[TelegramVoice] = None

    @property
    def sent_by_bot(self) -> bool:
        return bool(self.from_user and self.from_user.is_bot)

    @property
    def body(self) -> Optional[str]:
        """Message text, or the caption of a media message."""
        return self.text if self.text is not None else self.caption

    def largest_photo(self) -> Optional[TelegramPhotoSize]:
        if not self.photo:
            return None
        return max(self.photo, key=lambda size: size.width * size.height)


class TelegramUpdate(BaseModel):
    update_id: int
    message: Optional[TelegramMessage] = None
    edited_message: Optional[TelegramMessage] = None

    @property
    def effective_message(self) -> Optional[TelegramMessage]:
        return self.message or self.edited_message


class TelegramWebhookResponse(BaseModel):
    ok: bool = True
    message: Optional[str] = None
