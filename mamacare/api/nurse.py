import hmac
import logging

from fastapi import APIRouter, Body, Depends, Header
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from mamacare.core.config import settings
from mamacare.core.db import get_db
from mamacare.core.errors import InvalidRequestError, PersistenceError
from mamacare.schemas.chat import NurseNotifyRequest
from mamacare.schemas.telegram import TelegramUpdate
from mamacare.services import operator_bridge
from mamacare.services.telegram import get_bot

logger = logging.getLogger(__name__)

router = APIRouter(tags=["nurse"])


@router.post("/nurse-chat/notify")
def notify(req: NurseNotifyRequest, db: Session = Depends(get_db)):
    if not req.message or not req.conversation_id or not req.user_id:
        raise InvalidRequestError("`message`, `conversation_id`, and `user_id` are required.")

    bot = get_bot()
    try:
        operator_bridge.notify_operators(
            db, bot, req.conversation_id, req.message, req.user_id, req.user_name
        )
    finally:
        bot.close()
    return {"success": True}


@router.post("/telegram/webhook")
def telegram_webhook(
    payload: dict = Body(...),
    db: Session = Depends(get_db),
    x_telegram_bot_api_secret_token: str | None = Header(default=None),
):
    if settings.TELEGRAM_WEBHOOK_SECRET:
        given = x_telegram_bot_api_secret_token or ""
        if not hmac.compare_digest(given, settings.TELEGRAM_WEBHOOK_SECRET):
            logger.warning("webhook call with bad secret token")
            return JSONResponse(status_code=403, content={"error": "forbidden"})

    try:
        update = TelegramUpdate.model_validate(payload)
    except ValidationError:
        # Telegram retries non-2xx deliveries; a malformed update will never get better
        logger.warning("unparseable telegram update dropped")
        return PlainTextResponse("ok")

    bot = get_bot()
    try:
        outcome = operator_bridge.handle_update(db, bot, update)
    except PersistenceError as e:
        logger.exception("webhook update=%s failed to persist", update.update_id)
        return JSONResponse(status_code=500, content={"error": e.message})
    except SQLAlchemyError:
        db.rollback()
        logger.exception("webhook update=%s database error", update.update_id)
        return JSONResponse(status_code=500, content={"error": "Database error"})
    finally:
        bot.close()

    logger.info("webhook update=%s -> %s", update.update_id, outcome.value)
    return PlainTextResponse("ok")
