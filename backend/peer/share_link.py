"""Shareable links carrying the local peer address as a query parameter."""
from __future__ import annotations

from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

SHARE_PARAM = "peer"


def build_share_link(base_url: str, address: str) -> str:
    """Return ``base_url`` with ``?peer=<address>`` set, replacing any previous value."""
    parts = urlsplit(base_url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != SHARE_PARAM]
    query.append((SHARE_PARAM, address))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


def extract_peer_address(url: str) -> tuple[str | None, str]:
    """
    Split a loaded URL into the shared peer address (if any) and the URL
    with that parameter removed, for replacing the visible address.
    """
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    address = None
    kept = []
    for key, value in query:
        if key == SHARE_PARAM:
            if value.strip() and address is None:
                address = value.strip()
            continue
        kept.append((key, value))
    stripped = urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(kept), parts.fragment))
    return address, stripped
