"""Tests for Mercado Pago webhook signature verification.

Covers:
- x-signature header parsing (order, whitespace, missing parts)
- Manifest construction (lowercased id, omitted parts)
- Valid signature accepted, tampered id / wrong secret rejected
- Replay window (seconds and milliseconds timestamps)
"""

from __future__ import annotations

from consulta.payments.signature import (
    build_manifest,
    compute_signature,
    parse_signature_header,
    verify_signature,
)

SECRET = "whsec-test"
TS = "1772452800"
NOW = 1772452800.0

# ── Helpers ──────────────────────────────────────────────────────────


def _signed_header(data_id: str = "123456", request_id: str = "req-1", ts: str = TS, secret: str = SECRET) -> str:
    v1 = compute_signature(secret, build_manifest(data_id, request_id, ts))
    return f"ts={ts},v1={v1}"


# ── Parsing ──────────────────────────────────────────────────────────


class TestParsing:
    def test_parse_header(self):
        assert parse_signature_header("ts=1,v1=abc") == ("1", "abc")

    def test_parse_header_any_order_with_spaces(self):
        assert parse_signature_header(" v1=abc , ts=1 ") == ("1", "abc")

    def test_parse_header_missing_part(self):
        assert parse_signature_header("ts=1") == ("1", "")

    def test_manifest_lowercases_id(self):
        assert build_manifest("ABC1", "req-1", "10") == "id:abc1;request-id:req-1;ts:10;"

    def test_manifest_omits_missing_parts(self):
        assert build_manifest("123", "", "10") == "id:123;ts:10;"


# ── Verification ─────────────────────────────────────────────────────


class TestVerify:
    def test_valid_signature(self):
        assert verify_signature(SECRET, _signed_header(), "req-1", "123456", now=NOW)

    def test_wrong_secret(self):
        header = _signed_header(secret="other")
        assert not verify_signature(SECRET, header, "req-1", "123456", now=NOW)

    def test_tampered_data_id(self):
        assert not verify_signature(SECRET, _signed_header(), "req-1", "999999", now=NOW)

    def test_missing_header(self):
        assert not verify_signature(SECRET, "", "req-1", "123456", now=NOW)

    def test_malformed_header(self):
        assert not verify_signature(SECRET, "garbage", "req-1", "123456", now=NOW)

    def test_stale_timestamp(self):
        assert not verify_signature(SECRET, _signed_header(), "req-1", "123456", now=NOW + 301)

    def test_milliseconds_timestamp(self):
        ts_ms = TS + "000"
        header = _signed_header(ts=ts_ms)
        assert verify_signature(SECRET, header, "req-1", "123456", now=NOW + 10)

    def test_custom_max_age(self):
        assert verify_signature(SECRET, _signed_header(), "req-1", "123456", max_age=3600, now=NOW + 1800)
