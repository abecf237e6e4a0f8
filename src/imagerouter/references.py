from __future__ import annotations

import base64
import binascii
from typing import Any, Callable, Optional, Tuple
from urllib.error import URLError
from urllib.request import Request, urlopen

from .errors import BackendRequestError


def sniff_mime_type(content: bytes, fallback: str = "image/png") -> str:
    b = bytes(content or b"")
    if b.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if b.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if b.startswith(b"GIF87a") or b.startswith(b"GIF89a"):
        return "image/gif"
    if len(b) >= 12 and b[:4] == b"RIFF" and b[8:12] == b"WEBP":
        return "image/webp"
    return str(fallback or "application/octet-stream")


def decode_base64_bytes(s: str) -> bytes:
    raw = "".join(str(s or "").split())
    pad = (-len(raw)) % 4
    if pad:
        raw = raw + ("=" * pad)
    try:
        return base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError) as e:
        raise BackendRequestError("Image reference is not valid base64.") from e


def load_image_reference(
    reference: str,
    *,
    opener: Optional[Callable[..., Any]] = None,
    timeout_s: float = 60.0,
) -> Tuple[bytes, str]:
    """Resolve a data URL, http(s) URL or raw base64 string to `(bytes, mime_type)`."""
    ref = str(reference or "").strip()
    if not ref:
        raise BackendRequestError("Image reference is empty.")

    if ref[:5].lower() == "data:":
        header, sep, payload = ref.partition(",")
        if not sep:
            raise BackendRequestError("Malformed data URL: missing ',' separator.")
        mime = header[5:].split(";", 1)[0] or "image/png"
        if ";base64" not in header.lower():
            raise BackendRequestError("Only base64 data URLs are supported.")
        content = decode_base64_bytes(payload)
        return content, sniff_mime_type(content, mime)

    if ref[:7].lower() == "http://" or ref[:8].lower() == "https://":
        open_fn = opener or urlopen
        try:
            with open_fn(Request(url=ref, method="GET"), timeout=float(timeout_s)) as resp:
                content = resp.read()
                ct = resp.headers.get("Content-Type") if getattr(resp, "headers", None) is not None else None
        except URLError as e:
            raise BackendRequestError(f"Failed to download image from {ref}: {e}") from e
        return content, sniff_mime_type(content, str(ct or "image/png").split(";", 1)[0])

    content = decode_base64_bytes(ref)
    return content, sniff_mime_type(content)
