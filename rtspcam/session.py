"""RTSPClient: the RTSP session state machine.

The client drives OPTIONS -> DESCRIBE -> SETUP -> PLAY over an interleaved
TCP transport, answers 401 challenges once per request, and hands RTP/RTCP
chunks for the negotiated video track to an RTPInterpreter.

Every input (transport messages, binary chunks, keepalive ticks and the
play/pause/stop controls) is posted to one asyncio queue and handled by a
single actor task, so session fields are only ever touched from there.
play(), pause() and stop() may be called from any thread.
"""

from __future__ import annotations

import asyncio
import collections
import enum
import logging
import random
from typing import Any, Callable, Deque, Dict, Optional, Set

from .auth import AuthChallenge, parse_www_authenticate
from .exceptions import RTSPAuthError, RTSPError, RTSPProtocolError, RTSPTransportError
from .keepalive import DEFAULT_INTERVAL, KeepaliveScheduler
from .messages import RTSPRequest, RTSPResponse
from .rtp import RTPInterpreter, RTPPacket
from .sdp import ParameterSets, TrackNegotiation, negotiate
from .transport import InterleavedTransport
from .utils import logger, parse_rtsp_url, strip_credentials

log = logging.getLogger("rtspcam.session")

class SessionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AWAITING_OPTIONS = "awaiting-options"
    AWAITING_DESCRIBE = "awaiting-describe"
    AWAITING_SETUP = "awaiting-setup"
    PLAYING = "playing"
    PAUSED = "paused"
    # DESCRIBE succeeded but offered no usable video track
    IDLE = "idle"
    TORN_DOWN = "torn-down"

class RTSPClient:
    """Client side of one RTSP session carrying a single H264 video track."""

    def __init__(self,
                 sink: Any = None,
                 timeout: float = 5.0,
                 keepalive_interval: float = DEFAULT_INTERVAL,
                 user_agent: str = 'rtspcam/1.0',
                 mode: str = 'strict',
                 version: str = '1.0',
                 sdp_path: Optional[str] = None,
                 rng: Optional[random.Random] = None,
                 transport_factory: Optional[Callable[..., Any]] = None,
                 debug: bool = False):
        self.sink = sink
        self.timeout = float(timeout)
        self.keepalive_interval = float(keepalive_interval)
        self.user_agent = user_agent
        self.mode = mode
        self.version = version
        self.sdp_path = sdp_path
        self.transport_factory = transport_factory or InterleavedTransport
        if debug:
            logger.setLevel(logging.DEBUG)
            log.setLevel(logging.DEBUG)

        rng = rng or random.Random()
        self.ssrc = rng.randint(1, 0x7FFFFFFE)

        self.url: Optional[str] = None
        self.host: Optional[str] = None
        self.port: Optional[int] = None
        self.username: Optional[str] = None
        self.password: Optional[str] = None
        self.session_id: Optional[str] = None
        self.state = SessionState.DISCONNECTED
        self.challenge: Optional[AuthChallenge] = None
        self.supported_methods: Set[str] = set()
        self.track = TrackNegotiation()
        self.parameter_sets: Optional[ParameterSets] = None
        self.last_error: Optional[Exception] = None
        self.transport = None

        self._cseq = 1
        self._alive = False
        self._connected = False
        self._options_done = False
        self._in_flight: Optional[RTSPRequest] = None
        self._backlog: Deque[RTSPRequest] = collections.deque()
        self._events: Optional[asyncio.Queue] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._actor: Optional[asyncio.Task] = None
        self._interpreter: Optional[RTPInterpreter] = None
        self._keepalive = KeepaliveScheduler(self._on_keepalive_tick, self.keepalive_interval)

        # hooks
        self.on_error: Optional[Callable[[Exception], Any]] = None
        self.on_rtp: Optional[Callable[[RTPPacket, int], Any]] = None

    # control surface
    async def connect(self, url: str, username: Optional[str] = None, password: Optional[str] = None) -> bool:
        """Open the transport and send OPTIONS.

        Credentials default to the ones embedded in *url*. Returns False when
        the server can't be reached; the reason is kept in ``last_error``.
        """
        if self._alive:
            raise RTSPError('connect() called on an active session')
        self.host, user_in_url, pwd_in_url, self.port, _ = parse_rtsp_url(url, self.mode)
        self.url = strip_credentials(url)
        self.username = username if username is not None else user_in_url
        self.password = password if password is not None else pwd_in_url
        self._reset()
        self._set_state(SessionState.CONNECTING)

        self.transport = self.transport_factory(self.host, self.port, timeout=self.timeout, mode=self.mode)
        try:
            await self.transport.connect()
        except RTSPTransportError as exc:
            log.warning('Did not connect to %s:%d', self.host, self.port)
            self._report(exc)
            self._set_state(SessionState.TORN_DOWN)
            return False

        self._connected = True
        self._alive = True
        self._loop = asyncio.get_running_loop()
        self._events = asyncio.Queue()
        self.transport.on_message = lambda response: self._post('message', response)
        self.transport.on_data = lambda channel, data: self._post('data', channel, data)
        self.transport.on_disconnect = lambda: self._post('disconnect')
        self._actor = asyncio.ensure_future(self._run())
        self.transport.start()
        log.info('Connected to %s:%d', self.host, self.port)

        self._set_state(SessionState.AWAITING_OPTIONS)
        self._post('send', self._request('OPTIONS', '*', authenticate=False))
        return True

    def play(self) -> None:
        self._post('control', 'PLAY')

    def pause(self) -> None:
        self._post('control', 'PAUSE')

    def stop(self) -> None:
        self._post('control', 'TEARDOWN')

    def is_streaming_finished(self) -> bool:
        if not self._connected or self.transport is None:
            return True
        return not self.transport.connected

    async def wait_idle(self) -> None:
        """Wait until every event posted so far has been handled."""
        if self._events is not None:
            await self._events.join()

    # actor
    def _post(self, kind: str, *args: Any) -> None:
        if not self._alive or self._events is None:
            log.debug('Session not active, dropping %s event', kind)
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._events.put_nowait((kind, args))
        else:
            # called from another thread; the queue is only touched on its loop
            self._loop.call_soon_threadsafe(self._events.put_nowait, (kind, args))

    async def _run(self) -> None:
        events = self._events
        while True:
            kind, args = await events.get()
            try:
                if self._alive:
                    await self._dispatch(kind, args)
            except RTSPError as exc:
                self._report(exc)
            except Exception as exc:
                log.exception('Unhandled error while processing %s event', kind)
                self._report(exc)
            finally:
                events.task_done()
            if not self._alive:
                break
        while not events.empty():
            events.get_nowait()
            events.task_done()

    async def _dispatch(self, kind: str, args) -> None:
        if kind == 'message':
            await self._handle_response(*args)
        elif kind == 'data':
            await self._handle_data(*args)
        elif kind == 'keepalive':
            await self._send_keepalive()
        elif kind == 'control':
            await self._handle_control(*args)
        elif kind == 'send':
            await self._send(*args)
        elif kind == 'disconnect':
            self._report(RTSPTransportError('connection lost'))
            await self._teardown()

    # requests
    def _next_cseq(self) -> str:
        v = str(self._cseq)
        self._cseq += 1
        return v

    def _authorization(self, method: str) -> Optional[str]:
        if self.challenge is None:
            return None
        return self.challenge.authorization(self.username, self.password, method, self.url)

    def _request(self, method: str, uri: str, extra: Optional[Dict[str, str]] = None,
                 authenticate: bool = True) -> RTSPRequest:
        headers = {'CSeq': '', 'User-Agent': self.user_agent}
        if self.session_id:
            headers['Session'] = self.session_id
        if authenticate:
            auth = self._authorization(method)
            if auth:
                headers['Authorization'] = auth
        if extra:
            headers.update(extra)
        return RTSPRequest(method, uri, headers)

    async def _send(self, request: RTSPRequest) -> None:
        if self._in_flight is not None:
            self._backlog.append(request)
            return
        self._in_flight = request
        await self._transmit(request)

    async def _transmit(self, request: RTSPRequest) -> None:
        request.headers['CSeq'] = self._next_cseq()
        try:
            await self.transport.send_message(request)
        except RTSPTransportError as exc:
            log.warning('Failed to send %s: %s', request.method, exc)
            self._report(exc)
            await self._teardown()

    async def _send_next(self) -> None:
        if self._alive and self._in_flight is None and self._backlog:
            await self._send(self._backlog.popleft())

    # responses
    async def _handle_response(self, response: RTSPResponse) -> None:
        request = response.request
        if request is self._in_flight:
            self._in_flight = None
        if request is None:
            return

        try:
            if response.status_code == 401:
                await self._handle_unauthorized(response)
            elif not response.ok:
                log.warning('Got error in %s reply: %d %s', request.method,
                            response.status_code, response.reason)
                self._report(RTSPProtocolError(
                    f'{request.method} failed: {response.status_code} {response.reason}'))
            elif request.method == 'OPTIONS':
                await self._on_options(response)
            elif request.method == 'DESCRIBE':
                await self._on_describe(response)
            elif request.method == 'SETUP':
                await self._on_setup(response)
            elif request.method == 'PLAY':
                self._set_state(SessionState.PLAYING)
            elif request.method == 'PAUSE':
                self._set_state(SessionState.PAUSED)
        finally:
            await self._send_next()

    async def _handle_unauthorized(self, response: RTSPResponse) -> None:
        request = response.request
        if request.has_authorization or request.auth_retry:
            log.warning('Authorization for %s was rejected', request.method)
            self._report(RTSPAuthError(f'{request.method} {request.uri}: credentials rejected'))
            await self._teardown()
            return

        www_authenticate = response.header('WWW-Authenticate')
        if www_authenticate:
            self.challenge = parse_www_authenticate(www_authenticate, self.challenge)
            log.debug('WWW-Authenticate parsed: %s', self.challenge)

        retry = request.clone()
        retry.auth_retry = True
        auth = self._authorization(retry.method)
        if auth:
            retry.headers['Authorization'] = auth
        else:
            log.warning('No usable credentials for %s challenge', self.challenge and self.challenge.scheme)
        await self._send(retry)

    async def _on_options(self, response: RTSPResponse) -> None:
        public = response.header('Public') or ''
        self.supported_methods = {m.strip() for m in public.split(',') if m.strip()}
        if self._options_done:
            return
        self._options_done = True
        self._keepalive.start()
        self._set_state(SessionState.AWAITING_DESCRIBE)
        await self._send(self._request('DESCRIBE', self.url, {'Accept': 'application/sdp'}))

    async def _on_describe(self, response: RTSPResponse) -> None:
        sdp_text = response.text()
        if self.sdp_path:
            self._save_sdp(response.body)

        track, params = negotiate(sdp_text, self.url, response.header('Content-Base'))
        if params is not None and self.parameter_sets is None:
            self.parameter_sets = params
            if self.sink is not None:
                self.sink.on_parameter_sets(params.sps, params.pps)

        if track is None:
            log.warning('No supported video track in SDP; session stays idle')
            self._set_state(SessionState.IDLE)
            return

        self.track = track
        self._interpreter = RTPInterpreter(track, self.ssrc, self.transport.send_data,
                                           self.sink, self.on_rtp)
        transport = (f'RTP/AVP/TCP;unicast;interleaved='
                     f'{track.data_channel}-{track.control_channel}')
        self._set_state(SessionState.AWAITING_SETUP)
        await self._send(self._request('SETUP', track.control_url, {'Transport': transport}))

    def _save_sdp(self, body: bytes) -> None:
        try:
            with open(self.sdp_path, 'wb') as fh:
                fh.write(body)
        except OSError as exc:
            log.warning('Could not write SDP to %s: %s', self.sdp_path, exc)

    async def _on_setup(self, response: RTSPResponse) -> None:
        session_id = response.session_id
        if session_id is None:
            raise RTSPProtocolError('SETUP reply carries no Session header')
        self.session_id = session_id
        log.debug('Got reply from SETUP Session=%s', session_id)
        await self._send(self._request('PLAY', self.url))

    # other inputs
    async def _handle_data(self, channel: int, data: bytes) -> None:
        if self._interpreter is None:
            log.debug('Dropping %d bytes on channel %d before SETUP', len(data), channel)
            return
        await self._interpreter.handle(channel, data)

    def _on_keepalive_tick(self) -> None:
        self._post('keepalive')

    async def _send_keepalive(self) -> None:
        if self._in_flight is not None:
            log.debug('Keepalive skipped, %s still outstanding', self._in_flight.method)
            return
        method = 'GET_PARAMETER' if 'GET_PARAMETER' in self.supported_methods else 'OPTIONS'
        await self._send(self._request(method, self.url))

    async def _handle_control(self, method: str) -> None:
        if method == 'TEARDOWN':
            self._keepalive.stop()
        if self.session_id is None:
            log.debug('%s dropped: no session established yet', method)
        elif method == 'TEARDOWN':
            # the transport closes right after, so no reply is awaited
            await self._transmit(self._request(method, self.url))
        else:
            await self._send(self._request(method, self.url))
        if method == 'TEARDOWN':
            await self._teardown()

    async def _teardown(self) -> None:
        if not self._alive:
            return
        self._alive = False
        self._keepalive.stop()
        self._in_flight = None
        self._backlog.clear()
        self._set_state(SessionState.TORN_DOWN)
        if self.transport is not None:
            await self.transport.close()

    def _reset(self) -> None:
        self.session_id = None
        self.challenge = None
        self.supported_methods = set()
        self.track = TrackNegotiation()
        self.parameter_sets = None
        self.last_error = None
        self._cseq = 1
        self._options_done = False
        self._in_flight = None
        self._backlog.clear()
        self._interpreter = None

    def _set_state(self, state: SessionState) -> None:
        if state is not self.state:
            log.debug('Session state %s -> %s', self.state.value, state.value)
            self.state = state

    def _report(self, exc: Exception) -> None:
        self.last_error = exc
        log.warning('%s: %s', type(exc).__name__, exc)
        if self.on_error:
            self.on_error(exc)
