"""Append-only store of inbound processor events.

The store provides:
- Idempotent writes (unique processor event id)
- The processed/unprocessed flag, the only mutable column
- Lookups for auditing and reprocessing of stuck events
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from commission_engine.database import insert_if_absent
from commission_engine.ingestion.intents import DomainIntent
from commission_engine.models import PaymentEvent, utcnow

logger = logging.getLogger(__name__)


class EventStore:
    """Event store backed by the ``payment_event`` table.

    Usage:
        store = EventStore(session)

        # Store (idempotent)
        is_new = store.append(intent, payload, environment="production")

        # Flag as processed once domain effects are written
        store.mark_processed(intent.event_id)
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def append(
        self,
        intent: DomainIntent,
        payload: dict[str, Any],
        *,
        environment: str,
        received_at: datetime | None = None,
    ) -> bool:
        """Append event to store.

        Returns True if the event was stored, False if it already existed.
        """
        correlation = intent.correlation
        cancellation_details = intent.cancellation_details

        return insert_if_absent(
            self._session,
            PaymentEvent,
            {
                "event_id": intent.event_id,
                "event_type": intent.event_type,
                "environment": environment,
                "payload": payload,
                "correlated_user_id": correlation.user_id,
                "correlated_plan_id": correlation.plan_id,
                "correlated_product_id": correlation.product_id,
                "affiliate_id": correlation.affiliate_id,
                "external_subscription_id": intent.external_subscription_id,
                "email": correlation.email,
                "cancellation_reason": (cancellation_details or {}).get("reason"),
                "cancellation_details": cancellation_details,
                "processed": False,
                "received_at": received_at or utcnow(),
            },
            index_elements=["event_id"],
        )

    def get(self, event_id: str) -> PaymentEvent | None:
        """Get stored event by processor event id."""
        return self._session.scalar(
            select(PaymentEvent).where(PaymentEvent.event_id == event_id)
        )

    def is_processed(self, event_id: str) -> bool:
        """Whether the event exists and has been fully processed."""
        processed = self._session.scalar(
            select(PaymentEvent.processed).where(PaymentEvent.event_id == event_id)
        )
        return bool(processed)

    def mark_processed(self, event_id: str, *, at: datetime | None = None) -> None:
        """Flag the event as processed."""
        self._session.execute(
            update(PaymentEvent)
            .where(PaymentEvent.event_id == event_id)
            .values(processed=True, processed_at=at or utcnow())
        )

    def unprocessed(self, limit: int = 100) -> list[PaymentEvent]:
        """Oldest events that never completed processing."""
        return list(
            self._session.scalars(
                select(PaymentEvent)
                .where(PaymentEvent.processed.is_(False))
                .order_by(PaymentEvent.received_at)
                .limit(limit)
            )
        )
