"""Gemini proxy: realtime WebSocket relay, REST proxy and bundled web client on one port."""

__version__ = "0.1.0"
