import pytest

from rtspcam.exceptions import RTSPMalformedPacketError
from rtspcam.rtp import (RTPInterpreter, RTPPacket, build_receiver_report, iter_rtcp_packets)
from rtspcam.sdp import TrackNegotiation

def rtp_packet(payload=b'\x65\x88', pt=96, marker=0, csrcs=(), ext_words=None, seq=1, ts=3000, ssrc=0x11223344):
    b0 = 0x80 | len(csrcs)
    if ext_words is not None:
        b0 |= 0x10
    raw = bytes([b0, (marker << 7) | pt]) + seq.to_bytes(2, 'big') + ts.to_bytes(4, 'big') + ssrc.to_bytes(4, 'big')
    for c in csrcs:
        raw += c.to_bytes(4, 'big')
    if ext_words is not None:
        raw += (0xBEDE).to_bytes(2, 'big') + ext_words.to_bytes(2, 'big') + b'\xAA' * (4 * ext_words)
    return raw + payload

def rtcp(packet_type, words):
    return bytes([0x80, packet_type]) + words.to_bytes(2, 'big') + b'\x00' * (4 * words)

def test_rtp_parse_min_length():
    with pytest.raises(RTSPMalformedPacketError):
        RTPPacket.parse(b'\x80\x60')

def test_rtp_header_fields():
    p = RTPPacket.parse(rtp_packet(marker=1, seq=513, ts=90000, ssrc=0xDEADBEEF))
    assert (p.version, p.marker, p.payload_type) == (2, 1, 96)
    assert (p.sequence, p.timestamp, p.ssrc) == (513, 90000, 0xDEADBEEF)
    assert p.payload == b'\x65\x88'

def test_rtp_payload_offsets():
    assert RTPPacket.parse(rtp_packet()).payload_offset == 12
    with_csrcs = RTPPacket.parse(rtp_packet(csrcs=(1, 2)))
    assert with_csrcs.payload_offset == 20
    assert with_csrcs.csrcs == [1, 2]
    with_ext = RTPPacket.parse(rtp_packet(csrcs=(1, 2), ext_words=3))
    assert with_ext.payload_offset == 20 + 4 + 3 * 4
    assert with_ext.extension_profile == 0xBEDE
    assert with_ext.payload == b'\x65\x88'

def test_rtp_truncated_extension():
    raw = rtp_packet(ext_words=3, payload=b'')[:-4]
    with pytest.raises(RTSPMalformedPacketError):
        RTPPacket.parse(raw)

def test_rtp_padding_is_stripped():
    raw = bytearray(rtp_packet(payload=b'\x41\x42\x00\x00\x03'))
    raw[0] |= 0x20
    assert RTPPacket.parse(bytes(raw)).payload == b'\x41\x42'

def test_rtcp_walk_visits_each_packet():
    data = rtcp(200, 6) + rtcp(202, 2) + rtcp(203, 1)
    packets = list(iter_rtcp_packets(data))
    assert [(p.offset, p.packet_type, p.length) for p in packets] == [
        (0, 200, 6), (28, 202, 2), (40, 203, 1)]

def test_rtcp_walk_truncated_header():
    it = iter_rtcp_packets(rtcp(200, 1) + b'\x80')
    assert next(it).packet_type == 200
    with pytest.raises(RTSPMalformedPacketError):
        next(it)

def test_receiver_report_layout():
    assert build_receiver_report(0x01020304) == bytes([0x80, 201, 0x00, 0x01, 1, 2, 3, 4])

class Sink:
    def __init__(self):
        self.frames = []

    def on_frame_data(self, data):
        self.frames.append(data)

def interpreter(send_data=None, track=None):
    sent = []

    async def _send(channel, data):
        sent.append((channel, data))

    sink = Sink()
    track = track or TrackNegotiation(codec='H264', payload_type=96, control_url='rtsp://cam/track1')
    return RTPInterpreter(track, 0xCAFEBABE, send_data or _send, sink), sink, sent

@pytest.mark.asyncio
async def test_sender_report_gets_one_receiver_report():
    interp, _, sent = interpreter()
    await interp.handle(1, rtcp(200, 6))
    assert sent == [(1, build_receiver_report(0xCAFEBABE))]
    assert len(sent[0][1]) == 8

@pytest.mark.asyncio
async def test_compound_rtcp_replies_per_sender_report():
    interp, _, sent = interpreter()
    await interp.handle(1, rtcp(200, 6) + rtcp(202, 2) + rtcp(200, 6))
    assert len(sent) == 2

@pytest.mark.asyncio
async def test_receiver_report_send_failure_is_swallowed():
    async def broken(channel, data):
        raise OSError("broken pipe")

    interp, _, _ = interpreter(send_data=broken)
    await interp.handle(1, rtcp(200, 6))

@pytest.mark.asyncio
async def test_rtp_payload_forwarded_to_sink():
    interp, sink, _ = interpreter()
    await interp.handle(0, rtp_packet(payload=b'\x65\x01\x02'))
    await interp.handle(0, rtp_packet(payload=b'\x41\x03', csrcs=(9,), ext_words=1))
    assert sink.frames == [b'\x65\x01\x02', b'\x41\x03']

@pytest.mark.asyncio
async def test_payload_type_mismatch_is_dropped():
    interp, sink, _ = interpreter()
    await interp.handle(0, rtp_packet(pt=97))
    assert sink.frames == []

@pytest.mark.asyncio
async def test_malformed_rtp_is_dropped():
    interp, sink, _ = interpreter()
    await interp.handle(0, b'\x80\x60\x00')
    await interp.handle(0, rtp_packet())
    assert len(sink.frames) == 1

@pytest.mark.asyncio
async def test_unknown_channel_ignored():
    interp, sink, sent = interpreter()
    await interp.handle(5, rtp_packet())
    assert sink.frames == [] and sent == []
