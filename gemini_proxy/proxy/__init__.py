from .compat import CompatBackend, proxy_compat
from .direct import normalize_path, proxy_direct, target_url

__all__ = ["CompatBackend", "normalize_path", "proxy_compat", "proxy_direct", "target_url"]
