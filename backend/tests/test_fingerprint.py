from __future__ import annotations

from stumpwatch.fingerprint import reporter_fingerprint, source_address_from_headers


def test_fingerprint_is_stable_and_fixed_length() -> None:
    a = reporter_fingerprint("203.0.113.9", "Mozilla/5.0", "salt-1")
    b = reporter_fingerprint("203.0.113.9", "Mozilla/5.0", "salt-1")
    assert a == b
    assert len(a) == 32
    assert all(c in "0123456789abcdef" for c in a)


def test_fingerprint_changes_with_salt_address_or_agent() -> None:
    base = reporter_fingerprint("203.0.113.9", "Mozilla/5.0", "salt-1")
    assert reporter_fingerprint("203.0.113.9", "Mozilla/5.0", "salt-2") != base
    assert reporter_fingerprint("203.0.113.10", "Mozilla/5.0", "salt-1") != base
    assert reporter_fingerprint("203.0.113.9", "curl/8.0", "salt-1") != base


def test_fingerprint_does_not_embed_raw_address() -> None:
    token = reporter_fingerprint("203.0.113.9", "Mozilla/5.0", "salt-1")
    assert "203.0.113.9" not in token
    assert reporter_fingerprint(None, None, "s") == reporter_fingerprint("unknown", "unknown", "s")


def test_source_address_prefers_first_forwarded_hop() -> None:
    headers = {"x-forwarded-for": "198.51.100.1, 10.0.0.2", "x-real-ip": "10.0.0.3"}
    assert source_address_from_headers(headers, "127.0.0.1") == "198.51.100.1"
    assert source_address_from_headers({"x-real-ip": "10.0.0.3"}, "127.0.0.1") == "10.0.0.3"
    assert source_address_from_headers({}, "127.0.0.1") == "127.0.0.1"
