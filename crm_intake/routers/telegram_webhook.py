import json
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import ValidationError

from crm_intake.logging_config import get_logger
from crm_intake.schemas.telegram import TelegramUpdate, TelegramWebhookResponse
from crm_intake.services.event_parser import parse_update
from crm_intake.services.wiring import get_dispatcher
from crm_intake.services.workflow_dispatcher import WorkflowDispatcher

logger = get_logger("telegram_webhook")

router = APIRouter()


async def parse_telegram_update(request: Request) -> Optional[dict]:
    """
    Parse Telegram update with tolerant decoding to avoid utf-8 crashes.
    Returns dict or None.
    """
    raw = await request.body()
    for enc in ("utf-8", "latin-1"):
        try:
            decoded = raw.decode(enc, errors="replace")
            body = json.loads(decoded)
        except ValueError:
            continue
        return body if isinstance(body, dict) else None

    logger.error("Failed to decode Telegram webhook payload")
    return None


@router.post("/telegram-webhook", response_model=TelegramWebhookResponse)
async def handle_telegram_webhook(request: Request, dispatcher: WorkflowDispatcher = Depends(get_dispatcher)):
    """
    Handle Telegram webhook updates. Always answers 200 so Telegram does not
    redeliver; failures are reported in the body.
    """
    try:
        body = await parse_telegram_update(request)
        if body is None:
            return TelegramWebhookResponse(success=False, message="Invalid telegram payload")

        logger.debug(f"Telegram webhook received: {body}")

        try:
            update = TelegramUpdate(**body)
        except ValidationError as e:
            logger.warning(f"Unsupported telegram update: {e.error_count()} validation errors")
            return TelegramWebhookResponse(success=False, message="Unsupported update")

        event = parse_update(update)
        if event is None:
            return TelegramWebhookResponse(success=True, message="No actionable content")

        result = await run_in_threadpool(dispatcher.deliver, event)
        if not result.ok:
            return TelegramWebhookResponse(success=False, message=result.error_code)
        return TelegramWebhookResponse(success=True, message=event.kind)

    except Exception as e:
        logger.error(f"Telegram webhook error: {e}", exc_info=True)
        return TelegramWebhookResponse(success=False, message=str(e))
