"""RTSP request/response model and wire formatting."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from .exceptions import RTSPProtocolError
from .utils import validate_token

log = logging.getLogger("rtspcam.messages")

_STATUS_RE = re.compile(r"RTSP/[12]\.[01]\s+([0-9]{3})\s*(.*)$")

def _lookup(headers: Dict[str, str], name: str) -> Optional[str]:
    lowered = name.lower()
    for k, v in headers.items():
        if k.lower() == lowered:
            return v
    return None

def content_length(headers: Dict[str, str]) -> int:
    """Body length announced by *headers*; 0 when absent or unparsable."""
    value = _lookup(headers, 'Content-Length')
    try:
        return max(int(value), 0) if value is not None else 0
    except ValueError:
        log.warning('Ignoring bad Content-Length %r', value)
        return 0

@dataclass
class RTSPRequest:
    method: str
    uri: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: str = ''
    auth_retry: bool = False

    @property
    def cseq(self) -> Optional[int]:
        value = self.header('CSeq')
        return int(value) if value is not None and value.isdigit() else None

    @property
    def has_authorization(self) -> bool:
        return self.header('Authorization') is not None

    def header(self, name: str) -> Optional[str]:
        return _lookup(self.headers, name)

    def clone(self) -> "RTSPRequest":
        return RTSPRequest(self.method, self.uri, dict(self.headers), self.body, self.auth_retry)

    def encode(self, version: str = '1.0', mode: str = 'strict') -> bytes:
        validate_token('method', self.method, mode)
        headers = dict(self.headers)
        for k in headers.keys():
            validate_token('header-name', k, mode)
        if self.body and _lookup(headers, 'Content-Length') is None:
            headers['Content-Length'] = str(len(self.body.encode()))
        req_line = f"{self.method} {self.uri} RTSP/{version}\r\n"
        hdrs = ''.join(f"{k}: {v}\r\n" for k, v in headers.items())
        return (req_line + hdrs + '\r\n' + (self.body or '')).encode()

@dataclass
class RTSPResponse:
    status_code: int
    reason: str
    headers: Dict[str, str]
    body: bytes = b''
    request: Optional[RTSPRequest] = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def cseq(self) -> Optional[int]:
        value = self.header('CSeq')
        return int(value) if value is not None and value.strip().isdigit() else None

    @property
    def content_length(self) -> int:
        return content_length(self.headers)

    @property
    def session_id(self) -> Optional[str]:
        value = self.header('Session')
        if value is None:
            return None
        return value.split(';')[0].strip() or None

    def header(self, name: str) -> Optional[str]:
        return _lookup(self.headers, name)

    def text(self) -> str:
        return self.body.decode('utf-8', errors='replace')

def parse_header_lines(lines, mode: str = 'strict') -> Dict[str, str]:
    headers: Dict[str, str] = {}
    for line in lines:
        if not line:
            continue
        if ':' not in line:
            if mode == 'strict':
                raise RTSPProtocolError(f'Malformed header line: {line!r}')
            log.warning('lenient: malformed header line %r - skipping', line)
            continue
        k, v = line.split(':', 1)
        headers[k.strip()] = v.strip()
    return headers

def parse_status_line(status_line: str, mode: str = 'strict') -> Tuple[int, str]:
    m = _STATUS_RE.match(status_line)
    if not m:
        if mode == 'strict':
            raise RTSPProtocolError(f'Invalid status line: {status_line!r}')
        log.warning('lenient: invalid status line %r - treating as 500', status_line)
        return 500, ''
    return int(m.group(1)), m.group(2).strip()

def parse_response_head(raw: str, mode: str = 'strict') -> RTSPResponse:
    """Parse the status line and headers of a response (body not included)."""
    if not raw.strip():
        raise RTSPProtocolError('Empty response')
    lines = raw.strip('\r\n').split('\r\n')
    status_code, reason = parse_status_line(lines[0], mode)
    return RTSPResponse(status_code, reason, parse_header_lines(lines[1:], mode))
