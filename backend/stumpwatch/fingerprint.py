"""Reporter fingerprint: salted, non-reversible origin token.

Only used to spot repeated submissions from one origin, never to identify people.
"""
from __future__ import annotations

import hashlib
from typing import Mapping

FINGERPRINT_LENGTH = 32


def reporter_fingerprint(source_address: str | None, user_agent: str | None, salt: str) -> str:
    """Stable within a salt epoch: same (address, agent, salt) -> same token."""
    ip = (source_address or "").strip() or "unknown"
    ua = (user_agent or "").strip() or "unknown"
    digest = hashlib.sha256(f"{salt}:{ip}:{ua}".encode("utf-8")).hexdigest()
    return digest[:FINGERPRINT_LENGTH]


def source_address_from_headers(headers: Mapping[str, str], client_host: str | None = None) -> str | None:
    """First X-Forwarded-For hop, then X-Real-IP, then the socket peer."""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = (headers.get("x-real-ip") or "").strip()
    if real_ip:
        return real_ip
    return client_host
