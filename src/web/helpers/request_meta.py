"""Client metadata pulled from incoming requests."""

from typing import Dict, Mapping, Optional

from fastapi import Request

UTM_PARAMS = ("source", "medium", "campaign", "term", "content")


def get_client_ip(request: Request) -> str:
    """
    Best-effort client IP behind proxies.

    Checks x-forwarded-for (first hop), then x-real-ip, then
    cf-connecting-ip, then the socket peer.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    for header in ("x-real-ip", "cf-connecting-ip"):
        value = request.headers.get(header)
        if value:
            return value.strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def extract_utm_params(params: Mapping[str, str]) -> Dict[str, Optional[str]]:
    """Accept both utm_source and utmSource spellings."""
    result = {}
    for name in UTM_PARAMS:
        value = params.get(f"utm_{name}") or params.get(f"utm{name.capitalize()}")
        result[f"utm_{name}"] = value or None
    return result
