"""Interleaved RTSP-over-TCP transport (asyncio).

RTSP messages and RTP/RTCP chunks share one TCP connection. Binary chunks
are framed as ``$ <channel:1> <length:2> <data>`` (RFC 2326 section 10.12).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Optional

from .exceptions import RTSPConnectError, RTSPProtocolError, RTSPTransportError
from .messages import RTSPRequest, RTSPResponse, content_length, parse_header_lines, parse_response_head

log = logging.getLogger("rtspcam.transport")

INTERLEAVED_MAGIC = 0x24

class InterleavedTransport:
    def __init__(self, host: str, port: int, timeout: float = 5.0,
                 mode: str = 'strict', version: str = '1.0'):
        self.host = host
        self.port = int(port)
        self.timeout = float(timeout)
        self.mode = mode
        self.version = version
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._read_task: Optional[asyncio.Task] = None
        self._pending: Dict[int, RTSPRequest] = {}
        self._connected = False

        # hooks
        self.on_message: Optional[Callable[[RTSPResponse], Any]] = None
        self.on_data: Optional[Callable[[int, bytes], Any]] = None
        self.on_disconnect: Optional[Callable[[], Any]] = None

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port), timeout=self.timeout)
        except (OSError, asyncio.TimeoutError) as exc:
            raise RTSPConnectError(f"{self.host}:{self.port}: {exc or 'timeout'}") from exc
        self._connected = True
        log.debug("Connected to %s:%d", self.host, self.port)

    def start(self) -> None:
        if self._reader is None:
            raise RTSPTransportError('Not connected')
        if self._read_task is None:
            self._read_task = asyncio.ensure_future(self._read_loop())

    def attach(self, reader: asyncio.StreamReader, writer: Optional[asyncio.StreamWriter]) -> None:
        """Use an already-open stream pair instead of calling connect()."""
        self._reader, self._writer = reader, writer
        self._connected = True

    async def send_message(self, request: RTSPRequest) -> None:
        if not self._connected or self._writer is None:
            raise RTSPTransportError('Not connected')
        cseq = request.cseq
        if cseq is not None:
            self._pending[cseq] = request
        data = request.encode(self.version, self.mode)
        log.debug('>>> REQUEST >>>\n%s', data.decode(errors='replace'))
        self._writer.write(data)
        await self._writer.drain()

    async def send_data(self, channel: int, data: bytes) -> None:
        if not self._connected or self._writer is None:
            raise RTSPTransportError('Not connected')
        frame = bytes([INTERLEAVED_MAGIC, channel & 0xFF]) + len(data).to_bytes(2, 'big') + data
        self._writer.write(frame)
        await self._writer.drain()

    async def close(self) -> None:
        was_connected = self._connected
        self._connected = False
        self._pending.clear()
        task, self._read_task = self._read_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        try:
            if self._writer:
                self._writer.close()
                await self._writer.wait_closed()
        except (OSError, RuntimeError) as exc:
            log.debug('Error while closing transport: %s', exc)
        finally:
            self._reader = None
            self._writer = None
        if was_connected:
            log.debug('Transport to %s:%d closed', self.host, self.port)

    async def _read_loop(self) -> None:
        reader = self._reader
        try:
            while True:
                first = await reader.readexactly(1)
                if first[0] == INTERLEAVED_MAGIC:
                    await self._read_chunk(reader)
                elif first in (b'\r', b'\n'):
                    continue
                else:
                    await self._read_message(reader, first)
        except (asyncio.IncompleteReadError, ConnectionError) as exc:
            log.info('Connection to %s:%d lost: %s', self.host, self.port, exc)
        except asyncio.CancelledError:
            raise
        except (asyncio.LimitOverrunError, ValueError, OSError) as exc:
            log.warning('Transport read failed: %s', exc)
        self._connected = False
        self._read_task = None
        if self.on_disconnect:
            self.on_disconnect()

    async def _read_chunk(self, reader: asyncio.StreamReader) -> None:
        hdr = await reader.readexactly(3)
        channel = hdr[0]
        length = int.from_bytes(hdr[1:3], 'big')
        payload = await reader.readexactly(length)
        if self.on_data:
            self.on_data(channel, payload)

    async def _read_message(self, reader: asyncio.StreamReader, first: bytes) -> None:
        head = (first + await reader.readuntil(b'\r\n\r\n')).decode(errors='replace')
        if not head.startswith('RTSP/'):
            # server-originated request (e.g. ANNOUNCE); not answered
            lines = head.strip('\r\n').split('\r\n')
            length = content_length(parse_header_lines(lines[1:], 'lenient'))
            if length:
                await reader.readexactly(length)
            log.info('Ignoring server request %r', lines[0])
            return
        try:
            response = parse_response_head(head, self.mode)
        except RTSPProtocolError as exc:
            # keep framing: body length and CSeq still come from a lenient parse
            log.warning('Malformed response: %s', exc)
            response = parse_response_head(head, 'lenient')
            response.status_code, response.reason = 500, f'Malformed response: {exc}'
        if response.content_length:
            response.body = await reader.readexactly(response.content_length)
        cseq = response.cseq
        if cseq is not None:
            response.request = self._pending.pop(cseq, None)
        log.debug('<<< RESPONSE <<<\n%s', head)
        if response.request is None:
            log.warning('Response CSeq %s matches no outstanding request', cseq)
            return
        if self.on_message:
            self.on_message(response)
