"""HMAC verification of inbound webhook deliveries."""

from typing import Optional, Union
import hashlib
import hmac
import logging

logger = logging.getLogger(__name__)


def _to_bytes(value: Union[str, bytes]) -> bytes:
    return value.encode() if isinstance(value, str) else value


class WebhookVerificationService:
    """Signature checks for GitHub webhook deliveries.

    Comparisons are constant time. Secrets and computed digests never reach
    the logs.
    """

    def verify_github_signature(
        self,
        payload: Union[str, bytes],
        signature: Optional[str],
        secret: Optional[str],
    ) -> bool:
        """Check an ``X-Hub-Signature-256`` header (``sha256=<hex>``) against the raw body."""
        if not signature or not secret or not payload:
            logger.warning("Missing signature, secret, or payload for GitHub webhook")
            return False

        if not signature.startswith("sha256="):
            logger.warning("Invalid GitHub signature format (missing sha256= prefix)")
            return False

        expected = "sha256=" + hmac.new(
            secret.encode(), _to_bytes(payload), hashlib.sha256
        ).hexdigest()

        is_valid = hmac.compare_digest(signature.encode(), expected.encode())
        if not is_valid:
            logger.warning("GitHub webhook signature verification failed")
        return is_valid
