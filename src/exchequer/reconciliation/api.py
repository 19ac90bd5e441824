"""Webhook endpoint feeding provider events into reconciliation."""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ..connectors.base import ConnectorBase
from ..dependencies import get_connector, get_db
from .service import ReconciliationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    connector: ConnectorBase = Depends(get_connector),
):
    """
    Receive a Stripe event.

    The signature is checked against the raw body, so the body must not be
    parsed before verification. A bad signature is answered with 400; once
    verified, the event is always acknowledged, even if applying it failed.
    """
    body = await request.body()
    headers = {k.lower(): v for k, v in request.headers.items()}

    service = ReconciliationService(db, connector)
    await service.handle_webhook(headers, body)
    return {"received": True}
