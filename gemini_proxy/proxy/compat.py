"""Boundary to the OpenAI-compatibility translator."""

import logging
from typing import Protocol

from fastapi import Request
from fastapi.responses import Response

from ..errors import error_response


logger = logging.getLogger(__name__)


class CompatBackend(Protocol):
    async def fetch(self, request: Request) -> Response: ...


async def proxy_compat(request: Request, backend: CompatBackend) -> Response:
    try:
        return await backend.fetch(request)
    except Exception as exc:
        logger.error("API request error: %s", exc)
        return error_response(exc)
