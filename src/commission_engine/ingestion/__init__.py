"""Webhook ingestion: signature verification, classification and the event store."""

from commission_engine.ingestion.classifier import classify
from commission_engine.ingestion.intents import Correlation, DomainIntent, IntentKind
from commission_engine.ingestion.signature import SignatureVerificationError, verify_signature
from commission_engine.ingestion.store import EventStore

__all__ = [
    "Correlation",
    "DomainIntent",
    "EventStore",
    "IntentKind",
    "SignatureVerificationError",
    "classify",
    "verify_signature",
]
