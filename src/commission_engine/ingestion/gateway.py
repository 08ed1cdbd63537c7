"""Webhook ingestion: verify, classify, store, process.

Ingestion is at-least-once safe. The processor may deliver the same event
any number of times; the unique event id makes the store write idempotent
and the processed flag makes domain processing run to completion once.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy.orm import Session

from commission_engine.config import Settings
from commission_engine.errors import CommissionEngineError
from commission_engine.ingestion.classifier import classify
from commission_engine.ingestion.intents import DomainIntent
from commission_engine.ingestion.signature import verify_signature
from commission_engine.ingestion.store import EventStore
from commission_engine.services.environment import EnvironmentResolver
from commission_engine.services.event_processor import EventProcessor, ProcessingOutcome
from commission_engine.services.settlement import SettlementEngine

logger = logging.getLogger(__name__)


class MalformedEventError(CommissionEngineError):
    """Raised when a verified body is not a processor event."""


class EventProcessingError(CommissionEngineError):
    """Raised when a stored event failed domain processing.

    The event remains stored and unprocessed; redelivery retries it.
    """

    def __init__(self, event_id: str, cause: Exception):
        self.event_id = event_id
        self.cause = cause
        super().__init__(f"Processing of event {event_id} failed: {cause}")


class IngestStatus(str, Enum):
    PROCESSED = "processed"
    ALREADY_SEEN = "already_seen"


@dataclass
class IngestResult:
    """Result of ingesting one webhook delivery."""

    event_id: str
    status: IngestStatus
    intent: DomainIntent
    environment: str
    outcome: ProcessingOutcome | None = None

    @property
    def is_new(self) -> bool:
        return self.status == IngestStatus.PROCESSED


def parse_event(raw_body: bytes) -> dict[str, Any]:
    """Decode a webhook body into an event dict.

    Raises:
        MalformedEventError: If the body is not a JSON event object
    """
    try:
        event = json.loads(raw_body)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedEventError(f"Body is not valid JSON: {e}") from e

    if not isinstance(event, dict):
        raise MalformedEventError("Event must be a JSON object")
    if not event.get("id") or not event.get("type"):
        raise MalformedEventError("Event is missing id or type")
    data = event.get("data")
    if not isinstance(data, dict) or not isinstance(data.get("object"), dict):
        raise MalformedEventError("Event is missing data.object")
    return event


class WebhookGateway:
    """Entry point for processor webhooks.

    Usage:
        gateway = WebhookGateway(session, settings)
        result = gateway.ingest(raw_body, request.headers["Stripe-Signature"])
        session.commit()
    """

    def __init__(
        self,
        session: Session,
        settings: Settings,
        *,
        processor: EventProcessor | None = None,
    ):
        self.session = session
        self.settings = settings
        self.environment = EnvironmentResolver(session, settings)
        self.store = EventStore(session)
        self.processor = processor or EventProcessor(
            session,
            SettlementEngine(
                session, self.environment, max_depth=settings.max_commission_depth
            ),
        )

    def ingest(
        self,
        raw_body: bytes,
        signature_header: str | None,
        *,
        now: datetime | None = None,
    ) -> IngestResult:
        """Verify, store and process one delivery.

        Raises:
            SignatureVerificationError: Nothing was stored
            MalformedEventError: Nothing was stored
            EventProcessingError: The event was stored but not processed
        """
        environment = self.environment.active_environment()
        verify_signature(
            raw_body,
            signature_header,
            self.environment.webhook_secret(environment),
            tolerance_seconds=self.settings.signature_tolerance_seconds,
        )

        event = parse_event(raw_body)
        intent = classify(event)

        is_new = self.store.append(intent, event, environment=environment, received_at=now)
        if not is_new and self.store.is_processed(intent.event_id):
            logger.info("Event %s already processed", intent.event_id)
            return IngestResult(
                event_id=intent.event_id,
                status=IngestStatus.ALREADY_SEEN,
                intent=intent,
                environment=environment,
            )
        if not is_new:
            logger.info("Retrying unprocessed event %s", intent.event_id)

        outcome = self._process(intent, environment, now=now)
        return IngestResult(
            event_id=intent.event_id,
            status=IngestStatus.PROCESSED,
            intent=intent,
            environment=environment,
            outcome=outcome,
        )

    def replay_unprocessed(self, limit: int = 100) -> dict[str, int]:
        """Process stored events whose processing never completed.

        Failures are logged and counted; the events stay unprocessed.
        """
        counts = {"processed": 0, "failed": 0}
        for stored in self.store.unprocessed(limit):
            intent = classify(stored.payload)
            try:
                self._process(intent, stored.environment)
            except EventProcessingError:
                counts["failed"] += 1
            else:
                counts["processed"] += 1
        return counts

    def _process(
        self, intent: DomainIntent, environment: str, *, now: datetime | None = None
    ) -> ProcessingOutcome:
        try:
            with self.session.begin_nested():
                outcome = self.processor.process(intent, environment)
        except Exception as e:
            logger.exception("Event %s (%s) failed processing", intent.event_id, intent.event_type)
            raise EventProcessingError(intent.event_id, e) from e

        self.store.mark_processed(intent.event_id, at=now)
        logger.info(
            "Processed event %s (%s): %s", intent.event_id, intent.event_type, outcome.detail
        )
        return outcome
