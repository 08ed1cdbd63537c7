"""Webhook signature verification.

Deliveries are signed by the payment processor; the check itself is the
processor SDK's. This module only picks the failure type the rest of the
engine understands.
"""

from __future__ import annotations

import logging

import stripe

from commission_engine.errors import CommissionEngineError

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE_SECONDS = 300


class SignatureVerificationError(CommissionEngineError):
    """Raised when a webhook signature cannot be verified."""


def verify_signature(
    payload: bytes,
    header: str | None,
    secret: str | None,
    *,
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
) -> None:
    """Verify a webhook delivery against the environment's signing secret.

    Raises:
        SignatureVerificationError: on a missing secret or header, a
            signature mismatch or a timestamp outside the tolerance window.
    """
    if not secret:
        logger.warning("Webhook secret not configured")
        raise SignatureVerificationError("Webhook secret not configured")
    if not header:
        raise SignatureVerificationError("Missing signature header")

    try:
        stripe.WebhookSignature.verify_header(
            payload.decode("utf-8"), header, secret, tolerance_seconds
        )
    except UnicodeDecodeError:
        raise SignatureVerificationError("Payload is not valid UTF-8")
    except stripe.SignatureVerificationError as e:
        logger.info("Webhook signature rejected: %s", e)
        raise SignatureVerificationError(str(e)) from e
