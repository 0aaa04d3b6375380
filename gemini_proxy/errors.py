from fastapi.responses import PlainTextResponse


DEFAULT_ERROR_MESSAGE = "Unknown error occurred"
TEXT_PLAIN = "text/plain;charset=UTF-8"


class ProxyError(Exception):
    """An error that maps onto a plain-text HTTP response."""

    def __init__(self, status: int = 500, message: str | None = None):
        self.status = status or 500
        self.message = message or DEFAULT_ERROR_MESSAGE
        super().__init__(self.message)


def from_exception(exc: Exception) -> ProxyError:
    if isinstance(exc, ProxyError):
        return exc
    return ProxyError(500, str(exc))


def error_response(exc: Exception) -> PlainTextResponse:
    err = from_exception(exc)
    return PlainTextResponse(err.message, status_code=err.status, headers={"content-type": TEXT_PLAIN})
