from typing import Annotated

from fastapi import APIRouter, Header, Request

from settlement.deps import SessionDep
from settlement.models import WebhookAck
from settlement.services.webhook_service import WebhookService

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/tsara", response_model=WebhookAck)
async def tsara_webhook(
    request: Request,
    session: SessionDep,
    x_tsara_signature: Annotated[str | None, Header()] = None,
):
    """Payment status updates pushed by Tsara. The signature covers the raw body."""
    payload = await request.body()
    return WebhookService.handle_tsara_webhook(session, payload, x_tsara_signature)
