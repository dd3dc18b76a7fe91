import asyncio
import html
from contextlib import asynccontextmanager
from dataclasses import replace
from typing import Any, Callable, Optional

from fastapi.concurrency import run_in_threadpool

from listingbot.logging_config import conversation_logger, get_logger
from listingbot.schemas.webhook import Attachment, AttachmentKind, InboundEvent, parse_inbound_event
from listingbot.services.alert_service import alert_critical
from listingbot.services.errors import (
    GENERIC_APOLOGY_MESSAGE,
    AttachmentProcessingError,
    PersistenceError,
    TransientBackendError,
    ValidationError,
)
from listingbot.services.idempotency import IdempotencyFilter
from listingbot.services.listing_service import ListingService
from listingbot.services.media_service import MediaPipeline
from listingbot.services.messenger import OutboundMessenger
from listingbot.services.result import Result
from listingbot.services.session_store import SessionRecord, SessionStore
from listingbot.services.state_machine import (
    ConversationState,
    EffectKind,
    ProcessedImage,
    Transition,
    UserInput,
    transition,
)

logger = get_logger("orchestrator")

# Telegram rejects messages longer than 4096 characters.
MAX_REPLY_CHARS = 4000


def _escaped_reply(prefix: str, body: str, limit: int = MAX_REPLY_CHARS) -> str:
    """HTML-escape body and append it to prefix, cutting whole characters so no entity is split."""
    escaped = html.escape(body)
    if len(prefix) + len(escaped) <= limit:
        return prefix + escaped
    budget = limit - len(prefix) - 1
    pieces = []
    for char in body:
        piece = html.escape(char)
        if len(piece) > budget:
            break
        pieces.append(piece)
        budget -= len(piece)
    return prefix + "".join(pieces).rstrip() + "…"


class ConversationLocks:
    """Per-conversation asyncio locks, released from the registry once idle."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, key: str):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if self._holders[key] == 0:
                del self._holders[key]
                del self._locks[key]


class WebhookOrchestrator:
    """
    Drive one inbound Telegram event to completion.

    `accept` runs synchronously inside the webhook request (validation and
    dedup) so the transport can be acknowledged at once; `process` does the
    slow work afterwards as a background task.
    """

    def __init__(
        self,
        *,
        dedup: IdempotencyFilter,
        sessions: SessionStore,
        media: MediaPipeline,
        listings: ListingService,
        messenger: OutboundMessenger,
        locks: Optional[ConversationLocks] = None,
        alert: Callable[[str, Optional[dict]], bool] = alert_critical,
    ):
        self.dedup = dedup
        self.sessions = sessions
        self.media = media
        self.listings = listings
        self.messenger = messenger
        self.locks = locks or ConversationLocks()
        self.alert = alert

    def accept(self, payload: Any) -> Optional[InboundEvent]:
        """Validate and dedup a raw update. Returns the event to process, or None to drop it."""
        try:
            event = parse_inbound_event(payload)
        except ValidationError as exc:
            logger.info(f"Dropping unusable update: {exc}")
            return None

        if self.dedup.check_and_mark(event.event_id):
            logger.info(
                "Duplicate update dropped",
                extra={"context": {"event_id": event.event_id, "conversation_id": event.conversation_id}},
            )
            return None
        return event

    async def handle(self, payload: Any) -> bool:
        """accept + process in one call. Returns True when the event was processed."""
        event = self.accept(payload)
        if event is None:
            return False
        await self.process(event)
        return True

    async def process(self, event: InboundEvent) -> None:
        log = conversation_logger("orchestrator", event.conversation_id)
        async with self.locks.hold(event.conversation_id):
            try:
                reply = await self._handle_event(event, log)
            except Exception as exc:
                log.error(
                    f"Unhandled error while processing event: {exc}",
                    exc_info=True,
                    context={"event_id": event.event_id},
                )
                reply = GENERIC_APOLOGY_MESSAGE
            await self._deliver(event, reply, log)

    async def _handle_event(self, event: InboundEvent, log) -> str:
        try:
            stored = await self.sessions.get(event.conversation_id)
        except TransientBackendError as exc:
            log.error(f"Session load failed: {exc}", context={"event_id": event.event_id})
            return GENERIC_APOLOGY_MESSAGE
        session = stored or SessionRecord.fresh(event.conversation_id)

        attachment = event.attachment
        if attachment is not None and not self._feeds_conversation(attachment, session):
            return await self._describe_attachment(attachment)

        user_input = UserInput(event_id=event.event_id, text=event.text, returning=stored is not None)
        image = None
        if attachment is not None:
            try:
                image = await self.media.process_image(attachment.ref, session.draft.listing_id)
            except AttachmentProcessingError as exc:
                return exc.user_message
            user_input = replace(user_input, image=ProcessedImage(url=image.url, analysis=image.analysis))

        step = transition(session.state, session.collected_data, user_input)
        outcome = await self._run_effects(event, step, log)

        if outcome.ok:
            next_state, next_data, reply = step.state, step.data.to_dict(), step.reply
        else:
            # The session stays where it was so the user can retry the same step.
            next_state, next_data, reply = session.state, session.collected_data, GENERIC_APOLOGY_MESSAGE
            if image is not None:
                await self.media.discard(image.object_id)

        last_text = event.text if event.text is not None else f"[{attachment.kind.value}]" if attachment else ""
        try:
            await self.sessions.put(event.conversation_id, next_state, next_data, last_text)
        except TransientBackendError as exc:
            log.error(f"Session save failed: {exc}", context={"event_id": event.event_id})
            return GENERIC_APOLOGY_MESSAGE

        log.info(
            f"Transition {session.state.value} -> {next_state.value}",
            context={"event_id": event.event_id, "effects": [effect.kind.value for effect in step.effects]},
        )
        return reply

    @staticmethod
    def _feeds_conversation(attachment: Attachment, session: SessionRecord) -> bool:
        return (
            attachment.kind == AttachmentKind.IMAGE
            and session.state == ConversationState.AWAITING_IMAGES
            and bool(session.draft.listing_id)
        )

    async def _describe_attachment(self, attachment: Attachment) -> str:
        """One-shot "what is in this" answer; the session is left untouched."""
        try:
            if attachment.kind == AttachmentKind.IMAGE:
                image = await self.media.process_image(attachment.ref)
                return _escaped_reply("📸 Here's what I found in the image:\n", image.analysis)
            if attachment.kind == AttachmentKind.DOCUMENT:
                text = await self.media.process_document(attachment.ref, attachment.mime_type, attachment.file_name)
                return _escaped_reply("🗃️ Here's what I found in the PDF:\n", text)
            transcript = await self.media.process_voice(attachment.ref, attachment.mime_type)
            return _escaped_reply("🎙️ Here's what you said:\n", transcript)
        except AttachmentProcessingError as exc:
            return exc.user_message

    async def _run_effects(self, event: InboundEvent, step: Transition, log) -> Result[None]:
        for effect in step.effects:
            try:
                if effect.kind == EffectKind.PERSIST_LISTING:
                    await self.listings.persist_listing(event.conversation_id, effect.listing_id, effect.fields)
                elif effect.kind == EffectKind.PROCESS_IMAGE:
                    await self.listings.add_image(effect.listing_id, effect.image_url)
                elif effect.kind == EffectKind.FINALIZE:
                    log.info(f"Listing {effect.listing_id} finalized")
            except Exception as exc:
                error = PersistenceError(effect.kind.value, exc)
                log.error(
                    str(error),
                    exc_info=True,
                    context={"event_id": event.event_id, "listing_id": effect.listing_id},
                )
                await self._alert(
                    "Listing write failed",
                    {"conversation_id": event.conversation_id, "effect": effect.kind.value, "error": str(exc)},
                )
                return Result.from_exception(error, "persistence_error")
        return Result.success(None)

    async def _deliver(self, event: InboundEvent, reply: str, log) -> None:
        if not reply:
            return
        try:
            await self.messenger.send(event.conversation_id, reply)
        except TransientBackendError as exc:
            log.error(f"Reply delivery failed: {exc}", context={"event_id": event.event_id})
            await self._alert("Reply delivery failed", {"conversation_id": event.conversation_id, "error": str(exc)})

    async def _alert(self, message: str, context: dict) -> None:
        try:
            await run_in_threadpool(self.alert, message, context)
        except Exception as exc:
            logger.warning(f"Alert hook failed: {exc}")
