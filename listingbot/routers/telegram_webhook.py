import json
from typing import Any, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request

from listingbot.dependencies import get_orchestrator
from listingbot.logging_config import get_logger
from listingbot.schemas.telegram import TelegramWebhookResponse
from listingbot.services.orchestrator import WebhookOrchestrator

logger = get_logger("telegram_webhook")

router = APIRouter()

BODY_ENCODINGS = ("utf-8", "latin-1")


async def decode_update_body(request: Request) -> Optional[Any]:
    """Decode the raw webhook body as JSON; bytes that are not UTF-8 are read as latin-1. None if not JSON."""
    raw = await request.body()
    for encoding in BODY_ENCODINGS:
        try:
            text = raw.decode(encoding)
        except UnicodeDecodeError:
            continue
        try:
            return json.loads(text)
        except ValueError:
            break

    logger.warning("Telegram webhook body is not JSON", extra={"context": {"size": len(raw)}})
    return None


@router.post("/telegram-webhook", response_model=TelegramWebhookResponse)
async def handle_telegram_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    orchestrator: WebhookOrchestrator = Depends(get_orchestrator),
):
    """
    Acknowledge every update with 200 so Telegram does not redeliver it.

    Malformed and duplicate updates are dropped here; everything else is
    processed after the response has been sent.
    """
    body = await decode_update_body(request)
    if body is None:
        return TelegramWebhookResponse(message="Invalid telegram payload")

    event = orchestrator.accept(body)
    if event is None:
        return TelegramWebhookResponse(message="Ignored")

    background_tasks.add_task(orchestrator.process, event)
    return TelegramWebhookResponse(message="Accepted")
