import asyncio

import pytest

from rtspcam.exceptions import RTSPConnectError, RTSPTransportError
from rtspcam.messages import RTSPRequest
from rtspcam.rtp import build_receiver_report
from rtspcam.transport import InterleavedTransport

class FakeWriter:
    def __init__(self):
        self.buffer = bytearray()
        self.closed = False

    def write(self, data):
        self.buffer += data

    async def drain(self):
        pass

    def close(self):
        self.closed = True

    async def wait_closed(self):
        pass

def attached():
    reader = asyncio.StreamReader()
    writer = FakeWriter()
    t = InterleavedTransport("192.168.1.10", 554)
    t.attach(reader, writer)
    messages, chunks = [], []
    done = asyncio.Event()
    t.on_message = messages.append
    t.on_data = lambda channel, data: chunks.append((channel, data))
    t.on_disconnect = done.set
    return t, reader, writer, messages, chunks, done

@pytest.mark.asyncio
async def test_read_loop_demultiplexes_messages_and_chunks():
    t, reader, writer, messages, chunks, done = attached()
    request = RTSPRequest('DESCRIBE', 'rtsp://192.168.1.10/s', {'CSeq': '2'})
    await t.send_message(request)
    assert bytes(writer.buffer).startswith(b'DESCRIBE rtsp://192.168.1.10/s RTSP/1.0\r\nCSeq: 2\r\n')

    reader.feed_data(b'$\x00\x00\x03abc'
                     b'RTSP/1.0 200 OK\r\nCSeq: 2\r\nContent-Length: 5\r\n\r\nv=0\r\n'
                     b'$\x01\x00\x01z')
    reader.feed_eof()
    t.start()
    await asyncio.wait_for(done.wait(), 1)

    assert chunks == [(0, b'abc'), (1, b'z')]
    assert len(messages) == 1
    assert messages[0].request is request
    assert messages[0].status_code == 200
    assert messages[0].body == b'v=0\r\n'
    assert not t.connected

@pytest.mark.asyncio
async def test_server_requests_and_unmatched_responses_are_skipped():
    t, reader, _, messages, chunks, done = attached()
    reader.feed_data(b'ANNOUNCE rtsp://192.168.1.10/s RTSP/1.0\r\nCSeq: 9\r\nContent-Length: 3\r\n\r\nabc'
                     b'RTSP/1.0 200 OK\r\nCSeq: 77\r\n\r\n'
                     b'$\x00\x00\x02hi')
    reader.feed_eof()
    t.start()
    await asyncio.wait_for(done.wait(), 1)
    assert messages == []
    assert chunks == [(0, b'hi')]

@pytest.mark.asyncio
async def test_send_data_framing():
    t, _, writer, *_ = attached()
    report = build_receiver_report(5)
    await t.send_data(1, report)
    assert bytes(writer.buffer) == b'$\x01\x00\x08' + report

@pytest.mark.asyncio
async def test_close_closes_writer():
    t, _, writer, *_ = attached()
    await t.close()
    assert writer.closed
    assert not t.connected
    with pytest.raises(RTSPTransportError):
        await t.send_data(1, b'x')

@pytest.mark.asyncio
async def test_connect_refused():
    t = InterleavedTransport("127.0.0.1", 1, timeout=1.0)
    with pytest.raises(RTSPConnectError):
        await t.connect()
    assert not t.connected

@pytest.mark.asyncio
async def test_malformed_response_keeps_framing():
    t, reader, _, messages, chunks, done = attached()
    describe = RTSPRequest('DESCRIBE', 'rtsp://192.168.1.10/s', {'CSeq': '2'})
    options = RTSPRequest('OPTIONS', 'rtsp://192.168.1.10/s', {'CSeq': '3'})
    await t.send_message(describe)
    await t.send_message(options)

    reader.feed_data(b'RTSP/1.0 200 OK\r\nCSeq: 2\r\nX-Vendor-Junk\r\nContent-Length: 5\r\n\r\nv=0\r\n'
                     b'$\x00\x00\x02hi'
                     b'RTSP/1.0 200 OK\r\nCSeq: 3\r\n\r\n')
    reader.feed_eof()
    t.start()
    await asyncio.wait_for(done.wait(), 1)

    assert chunks == [(0, b'hi')]
    assert [m.request for m in messages] == [describe, options]
    assert messages[0].status_code == 500
    assert not messages[0].ok
    assert messages[0].body == b'v=0\r\n'
    assert messages[1].status_code == 200

@pytest.mark.asyncio
async def test_server_request_content_length_is_case_insensitive():
    t, reader, _, messages, chunks, done = attached()
    reader.feed_data(b'ANNOUNCE rtsp://192.168.1.10/s RTSP/1.0\r\nCSeq: 9\r\ncontent-length: 3\r\n\r\nabc'
                     b'$\x00\x00\x02hi'
                     b'SET_PARAMETER rtsp://192.168.1.10/s RTSP/1.0\r\nCSeq: 10\r\nContent-Length: junk\r\n\r\n'
                     b'$\x01\x00\x01z')
    reader.feed_eof()
    t.start()
    await asyncio.wait_for(done.wait(), 1)
    assert chunks == [(0, b'hi'), (1, b'z')]
    assert messages == []
