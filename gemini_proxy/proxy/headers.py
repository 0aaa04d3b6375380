from typing import Iterable, Optional


API_KEY_HEADER = "x-goog-api-key"
API_CLIENT_HEADER = "x-goog-api-client"

# Connection-scoped (RFC 7230 6.1); httpx and uvicorn frame each hop themselves
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "trailers",
    "transfer-encoding",
    "upgrade",
}


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Second space-separated token of an Authorization value, if any."""
    if not authorization:
        return None
    parts = authorization.split(" ")
    if len(parts) < 2 or not parts[1]:
        return None
    return parts[1]


def upstream_headers(headers: Iterable[tuple[str, str]], api_client: str) -> list[tuple[str, str]]:
    """Rewrite inbound headers for Gemini: drop Host, move the bearer token to x-goog-api-key."""
    out: list[tuple[str, str]] = []
    api_key = None
    for name, value in headers:
        lname = name.lower()
        if lname == "authorization":
            api_key = bearer_token(value)
            continue
        if lname == "host" or lname == API_CLIENT_HEADER or lname in HOP_BY_HOP_HEADERS:
            continue
        out.append((name, value))
    if api_key:
        out = [(name, value) for name, value in out if name.lower() != API_KEY_HEADER]
        out.append((API_KEY_HEADER, api_key))
    out.append((API_CLIENT_HEADER, api_client))
    return out


def response_headers(headers: Iterable[tuple[str, str]]) -> list[tuple[str, str]]:
    return [(name, value) for name, value in headers if name.lower() not in HOP_BY_HOP_HEADERS]
