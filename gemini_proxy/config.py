import os
from pathlib import Path

from dotenv import load_dotenv


load_dotenv()


def _get_env(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name, default)
    if value is None:
        return None
    value = value.strip()
    return value or default


class Config:
    HOST = _get_env("HOST", "0.0.0.0")
    PORT = int(_get_env("PORT", "8000"))
    LOG_LEVEL = _get_env("LOG_LEVEL", "INFO")


    # Upstream (Gemini). The realtime URL is derived from this by swapping the scheme.
    UPSTREAM_BASE_URL = _get_env("UPSTREAM_BASE_URL", "https://generativelanguage.googleapis.com")
    API_CLIENT_ID = _get_env("API_CLIENT_ID", "genai-js/0.21.0")


    # Bundled web client
    STATIC_DIR = Path(_get_env("STATIC_DIR", str(Path(__file__).parent / "web")))


    # WebSocket relay
    RELAY_DIAL_TIMEOUT = float(_get_env("RELAY_DIAL_TIMEOUT", "10"))
    RELAY_CLOSE_TIMEOUT = float(_get_env("RELAY_CLOSE_TIMEOUT", "5"))
    RELAY_MAX_PENDING_MESSAGES = int(_get_env("RELAY_MAX_PENDING_MESSAGES", "256"))
    RELAY_MAX_PENDING_BYTES = int(_get_env("RELAY_MAX_PENDING_BYTES", str(16 * 1024 * 1024)))
    # 0 disables the frame size limit on the upstream socket
    UPSTREAM_MAX_MESSAGE_BYTES = int(_get_env("UPSTREAM_MAX_MESSAGE_BYTES", str(16 * 1024 * 1024)))


    # REST proxy; streaming generations can run for a while
    HTTP_CONNECT_TIMEOUT = float(_get_env("HTTP_CONNECT_TIMEOUT", "10"))
    HTTP_READ_TIMEOUT = float(_get_env("HTTP_READ_TIMEOUT", "300"))


    # OpenAI compatibility layer
    DEFAULT_CHAT_MODEL = _get_env("DEFAULT_CHAT_MODEL", "gemini-2.0-flash")
    DEFAULT_EMBEDDINGS_MODEL = _get_env("DEFAULT_EMBEDDINGS_MODEL", "text-embedding-004")
