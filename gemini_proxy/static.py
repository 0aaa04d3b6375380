import logging
import os
from pathlib import Path
from types import MappingProxyType

from fastapi.responses import FileResponse, PlainTextResponse, Response

from .errors import TEXT_PLAIN


logger = logging.getLogger(__name__)

CONTENT_TYPES = MappingProxyType({
    "js": "application/javascript",
    "css": "text/css",
    "html": "text/html",
    "json": "application/json",
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
})


def content_type(path: str) -> str:
    ext = os.path.splitext(path)[1].lstrip(".").lower()
    return CONTENT_TYPES.get(ext, "text/plain")


def not_found() -> Response:
    return PlainTextResponse("Not Found", status_code=404, headers={"content-type": TEXT_PLAIN})


def resolve(root: Path, path: str) -> Path | None:
    """Map a URL path onto a file under `root`; None if it would escape it."""
    if path in ("/", "/index.html"):
        path = "/index.html"
    if ".." in path.split("/"):
        return None
    root = root.resolve()
    candidate = (root / path.lstrip("/")).resolve()
    if candidate != root and root not in candidate.parents:
        return None
    return candidate


def serve_static(root: Path, path: str) -> Response:
    file_path = resolve(root, path)
    if file_path is None:
        logger.warning("Rejected static path outside asset root: %s", path)
        return not_found()
    if not file_path.is_file() or not os.access(file_path, os.R_OK):
        return not_found()
    return FileResponse(file_path, media_type=f"{content_type(file_path.name)};charset=UTF-8")
