"""Tests for webhook signature verification."""

import time

import pytest
import stripe

from commission_engine.ingestion.signature import SignatureVerificationError, verify_signature

from .conftest import build_signature_header

SECRET = "whsec_unit"
BODY = b'{"id": "evt_1", "type": "invoice.paid"}'


class TestVerifySignature:
    """Test verification through the processor SDK."""

    def test_valid_signature_accepted(self):
        header = build_signature_header(SECRET, BODY)
        verify_signature(BODY, header, SECRET)

    def test_any_matching_signature_accepted(self):
        """During secret rotation several v1 entries are sent."""
        good = build_signature_header(SECRET, BODY)
        ts, signature = good.split(",")
        verify_signature(BODY, f"{ts},v1={'0' * 64},{signature}", SECRET)

    def test_wrong_secret_rejected(self):
        header = build_signature_header("whsec_other", BODY)
        with pytest.raises(SignatureVerificationError):
            verify_signature(BODY, header, SECRET)

    def test_tampered_body_rejected(self):
        header = build_signature_header(SECRET, BODY)
        with pytest.raises(SignatureVerificationError):
            verify_signature(BODY + b" ", header, SECRET)

    @pytest.mark.parametrize("header", ["sig-bad", "v1=abc", "t=notanumber,v1=abc"])
    def test_malformed_header_rejected(self, header):
        with pytest.raises(SignatureVerificationError):
            verify_signature(BODY, header, SECRET)

    @pytest.mark.parametrize("header", [None, ""])
    def test_missing_header_rejected(self, header):
        with pytest.raises(SignatureVerificationError, match="Missing signature header"):
            verify_signature(BODY, header, SECRET)

    def test_stale_timestamp_rejected(self):
        header = build_signature_header(SECRET, BODY, timestamp=int(time.time()) - 600)
        with pytest.raises(SignatureVerificationError, match="tolerance"):
            verify_signature(BODY, header, SECRET, tolerance_seconds=300)

    def test_timestamp_within_tolerance_accepted(self):
        header = build_signature_header(SECRET, BODY, timestamp=int(time.time()) - 60)
        verify_signature(BODY, header, SECRET, tolerance_seconds=300)

    def test_missing_secret_rejected(self):
        header = build_signature_header(SECRET, BODY)
        with pytest.raises(SignatureVerificationError, match="not configured"):
            verify_signature(BODY, header, None)

    def test_sdk_error_is_chained(self):
        header = build_signature_header("whsec_other", BODY)
        with pytest.raises(SignatureVerificationError) as exc_info:
            verify_signature(BODY, header, SECRET)
        assert isinstance(exc_info.value.__cause__, stripe.SignatureVerificationError)
