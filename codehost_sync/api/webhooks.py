"""Webhook handling endpoints."""

from fastapi import APIRouter, Depends, HTTPException, status, Request, Header
from typing import Optional
import logging

from codehost_sync.integrations.base import WebhookVerificationError
from codehost_sync.services.webhook_service import WebhookService
from codehost_sync.api.dependencies import get_webhook_service

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/github")
async def handle_github_webhook(
    request: Request,
    x_hub_signature_256: Optional[str] = Header(None),
    x_github_event: Optional[str] = Header(None),
    x_github_delivery: Optional[str] = Header(None),
    service: WebhookService = Depends(get_webhook_service),
):
    """Handle a GitHub App webhook delivery."""
    body = await request.body()

    if not x_github_event:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing X-GitHub-Event header"
        )

    try:
        result = await service.handle_github_webhook(body, x_hub_signature_256, x_github_event)
    except WebhookVerificationError:
        logger.warning(f"Invalid webhook signature for delivery {x_github_delivery}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook signature"
        )
    except ValueError:
        logger.error(f"Invalid JSON in webhook delivery {x_github_delivery}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid JSON payload"
        )

    return {"status": "processed", "delivery": x_github_delivery, "result": result}
