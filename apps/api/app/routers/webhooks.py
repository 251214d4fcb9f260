"""Telephony provider webhook intake."""
from __future__ import annotations

import hashlib
import hmac
import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.errors import EventValidationError, NotFoundError, TransitionRejected
from ..db.session import get_session
from ..services.events import parse_provider_event
from ..services.lifecycle import CallLifecycle
from .deps import get_lifecycle

logger = logging.getLogger(__name__)

router = APIRouter()

SIGNATURE_HEADER = "x-vapi-signature"


def verify_signature(secret: str, body: bytes, signature: str) -> bool:
    """Check a hex HMAC-SHA256 of the raw body."""

    if not signature:
        return False
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature.strip().lower())


@router.post("/vapi")
async def receive_vapi_event(
    request: Request,
    session: AsyncSession = Depends(get_session),
    lifecycle: CallLifecycle = Depends(get_lifecycle),
) -> dict[str, bool]:
    """Apply one provider event.

    Anything but a bad signature is acknowledged with 200 so the provider does
    not retry events we have already judged.
    """

    body = await request.body()
    if settings.vapi_webhook_secret and not verify_signature(
        settings.vapi_webhook_secret, body, request.headers.get(SIGNATURE_HEADER, "")
    ):
        logger.warning("Rejected provider webhook with an invalid signature")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("Provider webhook body is not JSON")
        return {"success": True}

    try:
        event = parse_provider_event(payload)
        if event is not None:
            await lifecycle.handle(event, session)
    except EventValidationError as exc:
        logger.warning("Dropping invalid provider event: %s", exc)
    except NotFoundError as exc:
        logger.warning("Dropping provider event: %s", exc)
    except TransitionRejected as exc:
        logger.debug("Ignoring provider event: %s", exc)
    except Exception:  # noqa: BLE001 - a 5xx makes the provider redeliver
        logger.exception("Failed to apply provider event %s", payload.get("type") if isinstance(payload, dict) else None)

    return {"success": True}
