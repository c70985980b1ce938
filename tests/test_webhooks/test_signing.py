"""Tests for webhook payload signing."""

import hashlib
import hmac
import json
from datetime import UTC, date, datetime
from decimal import Decimal

import pytest

from oee_monitor.webhooks.signing import (
    SIGNATURE_HEADER,
    format_signature,
    serialize_payload,
    sign_payload,
    verify_from_headers,
    verify_signature,
)

SECRET = "test-secret-123"


@pytest.fixture
def body():
    """Serialized sample payload."""
    return serialize_payload(
        {"event": "machine.created", "data": {"machineId": "m-1", "name": "Presse Süd"}}
    )


class TestSerializePayload:
    """Tests for payload serialization."""

    def test_compact(self):
        """Test serialization has no whitespace between tokens."""
        assert serialize_payload({"a": 1, "b": [1, 2]}) == b'{"a":1,"b":[1,2]}'

    def test_unicode_kept(self):
        """Test non-ASCII text is encoded as UTF-8, not escaped."""
        assert serialize_payload({"name": "é"}) == '{"name":"é"}'.encode()

    def test_datetimes_iso_format(self):
        """Test datetimes and dates are written as ISO-8601."""
        ts = datetime(2024, 1, 1, 6, 30, tzinfo=UTC)
        day = date(2024, 1, 1)

        decoded = json.loads(serialize_payload({"at": ts, "day": day}))

        assert decoded == {"at": "2024-01-01T06:30:00+00:00", "day": "2024-01-01"}

    def test_other_values_stringified(self):
        """Test other non-JSON values fall back to str."""
        assert json.loads(serialize_payload({"oee": Decimal("0.85")})) == {"oee": "0.85"}


class TestSignPayload:
    """Tests for signature generation."""

    def test_matches_hmac_sha256(self, body):
        """Test the signature is HMAC-SHA256 over the body."""
        expected = hmac.new(SECRET.encode(), body, hashlib.sha256).hexdigest()

        assert sign_payload(SECRET, body) == expected

    def test_deterministic(self, body):
        """Test the same input gives the same signature."""
        assert sign_payload(SECRET, body) == sign_payload(SECRET, body)

    def test_format_signature(self):
        """Test header formatting."""
        assert format_signature("abc") == "sha256=abc"


class TestVerifySignature:
    """Tests for signature verification."""

    def test_valid(self, body):
        """Test a correct signature verifies."""
        signature = format_signature(sign_payload(SECRET, body))

        assert verify_signature(body, signature, SECRET)

    def test_valid_without_prefix(self, body):
        """Test bare hex digests are accepted."""
        assert verify_signature(body, sign_payload(SECRET, body), SECRET)

    def test_wrong_secret(self, body):
        """Test a different secret fails."""
        signature = format_signature(sign_payload(SECRET, body))

        assert not verify_signature(body, signature, "other-secret")

    def test_tampered_body(self, body):
        """Test a modified body fails."""
        signature = format_signature(sign_payload(SECRET, body))

        assert not verify_signature(body + b" ", signature, SECRET)

    def test_reserialized_body_fails(self, body):
        """Test pretty-printing the payload breaks the signature."""
        signature = format_signature(sign_payload(SECRET, body))
        reserialized = json.dumps(json.loads(body), indent=2).encode()

        assert not verify_signature(reserialized, signature, SECRET)


class TestVerifyFromHeaders:
    """Tests for header-based verification."""

    def test_case_insensitive_header(self, body):
        """Test the signature header is found regardless of case."""
        headers = {"x-webhook-signature": format_signature(sign_payload(SECRET, body))}

        assert verify_from_headers(body, headers, SECRET)

    def test_missing_header(self, body):
        """Test a missing header raises."""
        with pytest.raises(ValueError, match=SIGNATURE_HEADER):
            verify_from_headers(body, {"Content-Type": "application/json"}, SECRET)
