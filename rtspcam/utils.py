"""Utilities: logging, URL parsing, validation helpers.

parse_rtsp_url returns a 5-tuple:
    (host, username_or_None, password_or_None, port, path)

strip_credentials returns the URL with any userinfo removed, which is the
form the client sends on the wire.
"""

from __future__ import annotations

import logging
import re
from typing import Optional, Tuple
from urllib.parse import unquote, urlparse, urlunparse

from .exceptions import RTSPValidationError

logger = logging.getLogger("rtspcam")
logger.addHandler(logging.NullHandler())

_TOKEN_RE = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")

def validate_token(name: str, value: str, mode: str = "strict") -> None:
    """Validate small token-like strings (header names or methods)."""
    if not isinstance(value, str):
        raise RTSPValidationError(f"{name} must be str")
    if not _TOKEN_RE.match(value):
        if mode == "strict":
            raise RTSPValidationError(f"Invalid {name}: {value!r}")
        else:
            logger.warning("lenient: invalid %s %r - continuing", name, value)

def parse_rtsp_url(url: str, mode: str = "strict") -> Tuple[str, Optional[str], Optional[str], int, str]:
    """Parse RTSP/RTSPS URL.

    Returns:
        (host, username, password, port, path)
    Raises:
        RTSPValidationError on invalid URL in strict mode.
    """
    if not isinstance(url, str):
        raise RTSPValidationError("url must be a string")
    parsed = urlparse(url)
    scheme = (parsed.scheme or "").lower()
    if scheme not in ("rtsp", "rtsps"):
        if mode == "strict":
            raise RTSPValidationError(f"Invalid RTSP scheme: {parsed.scheme!r}")
        else:
            logger.warning("lenient: invalid scheme in URL %r", url)
            return "", None, None, 554, "/"

    username = unquote(parsed.username) if parsed.username is not None else None
    password = unquote(parsed.password) if parsed.password is not None else None

    host = parsed.hostname
    if not host:
        raise RTSPValidationError(f"Missing host in URL: {url!r}")

    default_port = 322 if scheme == "rtsps" else 554
    port = parsed.port or default_port

    path = parsed.path or "/"

    return host, username, password, int(port), path

def strip_credentials(url: str) -> str:
    """Return *url* without the ``user:password@`` part of its netloc."""
    parsed = urlparse(url)
    if "@" not in parsed.netloc:
        return url
    netloc = parsed.netloc.rsplit("@", 1)[1]
    return urlunparse(parsed._replace(netloc=netloc))
