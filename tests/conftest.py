import random

import pytest

from rtspcam.messages import RTSPResponse
from rtspcam.session import RTSPClient

URL = "rtsp://192.168.1.10:554/stream1"

SDP_H264 = (
    "v=0\r\n"
    "o=- 0 0 IN IP4 192.168.1.10\r\n"
    "s=camera\r\n"
    "t=0 0\r\n"
    "m=audio 0 RTP/AVP 0\r\n"
    "a=control:track0\r\n"
    "m=video 0 RTP/AVP 96\r\n"
    "a=control:track1\r\n"
    "a=rtpmap:96 H264/90000\r\n"
    "a=fmtp:96 packetization-mode=1;sprop-parameter-sets=AAAA,BBBB\r\n"
)

class FakeTransport:
    """In-memory stand-in for InterleavedTransport."""

    def __init__(self, host, port, timeout=5.0, mode='strict', fail_connect=False):
        self.host = host
        self.port = port
        self.fail_connect = fail_connect
        self.sent = []
        self.data = []
        self.closed = False
        self._connected = False
        self.on_message = None
        self.on_data = None
        self.on_disconnect = None

    @property
    def connected(self):
        return self._connected

    async def connect(self):
        from rtspcam.exceptions import RTSPConnectError
        if self.fail_connect:
            raise RTSPConnectError("refused")
        self._connected = True

    def start(self):
        pass

    async def send_message(self, request):
        self.sent.append(request)

    async def send_data(self, channel, data):
        self.data.append((channel, data))

    async def close(self):
        self._connected = False
        self.closed = True

    def methods(self):
        return [r.method for r in self.sent]

    def reply(self, status=200, headers=None, body=b'', reason='OK', request=None):
        request = request or self.sent[-1]
        hdrs = {'CSeq': request.header('CSeq')}
        hdrs.update(headers or {})
        if body:
            hdrs['Content-Length'] = str(len(body))
        self.on_message(RTSPResponse(status, reason, hdrs, body, request))

class RecordingSink:
    def __init__(self):
        self.parameter_sets = []
        self.frames = []

    def on_parameter_sets(self, sps, pps):
        self.parameter_sets.append((sps, pps))

    def on_frame_data(self, data):
        self.frames.append(data)

@pytest.fixture
def sink():
    return RecordingSink()

@pytest.fixture
def make_client(sink):
    transports = []

    def factory(host, port, **kwargs):
        t = FakeTransport(host, port, **kwargs)
        transports.append(t)
        return t

    async def _make(url=URL, username='admin', password='secret', **kwargs):
        kwargs.setdefault('keepalive_interval', 3600)
        client = RTSPClient(sink=sink, rng=random.Random(7), transport_factory=factory, **kwargs)
        assert await client.connect(url, username, password)
        await client.wait_idle()
        return client, transports[-1]

    return _make
