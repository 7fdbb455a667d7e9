"""Mercado Pago webhook signature verification.

Mercado Pago signs notifications with the ``x-signature`` header::

    x-signature: ts=1704908010,v1=618c8534...

where ``v1`` is HMAC-SHA256 (hex) of the manifest
``id:{data.id};request-id:{x-request-id};ts:{ts};`` keyed with the
application's webhook secret. Parts missing from the request are omitted
from the manifest.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import time

logger = logging.getLogger(__name__)

# Replay window for the signed timestamp
MAX_WEBHOOK_AGE_SECONDS = 300


def parse_signature_header(header: str) -> tuple[str, str]:
    """Split ``ts=...,v1=...`` into (ts, v1). Missing parts come back empty."""
    parts: dict[str, str] = {}
    for chunk in header.split(","):
        key, sep, value = chunk.strip().partition("=")
        if sep:
            parts[key.strip()] = value.strip()
    return parts.get("ts", ""), parts.get("v1", "")


def build_manifest(data_id: str, request_id: str, ts: str) -> str:
    manifest = ""
    if data_id:
        # alphanumeric ids are signed lowercased
        manifest += f"id:{data_id.lower()};"
    if request_id:
        manifest += f"request-id:{request_id};"
    if ts:
        manifest += f"ts:{ts};"
    return manifest


def compute_signature(secret: str, manifest: str) -> str:
    return hmac.new(secret.encode("utf-8"), manifest.encode("utf-8"), hashlib.sha256).hexdigest()


def _timestamp_fresh(ts: str, max_age: int, now: float | None = None) -> bool:
    try:
        sent = int(ts)
    except ValueError:
        return False
    # Mercado Pago sends milliseconds on newer integrations
    if sent > 10**11:
        sent //= 1000
    current = int(now if now is not None else time.time())
    return abs(current - sent) <= max_age


def verify_signature(
    secret: str,
    signature_header: str,
    request_id: str,
    data_id: str,
    *,
    max_age: int = MAX_WEBHOOK_AGE_SECONDS,
    now: float | None = None,
) -> bool:
    """True if the notification was signed with ``secret`` and is fresh."""
    if not signature_header:
        logger.warning("Mercado Pago webhook without x-signature header")
        return False

    ts, received = parse_signature_header(signature_header)
    if not ts or not received:
        logger.warning("Malformed x-signature header")
        return False

    if not _timestamp_fresh(ts, max_age, now):
        logger.warning("Mercado Pago webhook timestamp outside replay window: ts=%s", ts)
        return False

    expected = compute_signature(secret, build_manifest(data_id, request_id, ts))
    if not hmac.compare_digest(expected, received):
        logger.warning("Mercado Pago webhook signature mismatch for data.id=%s", data_id)
        return False
    return True
