from .openai import GeminiCompat

__all__ = ["GeminiCompat"]
