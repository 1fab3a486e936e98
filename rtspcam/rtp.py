"""RTP/RTCP parsing (RFC 3550 subset) and the interleaved chunk interpreter."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterator, List, Optional

from .exceptions import RTSPMalformedPacketError
from .sdp import TrackNegotiation

log = logging.getLogger("rtspcam.rtp")

RTCP_SR = 200
RTCP_RR = 201

@dataclass
class RTPPacket:
    version: int
    padding: int
    extension: int
    csrc_count: int
    marker: int
    payload_type: int
    sequence: int
    timestamp: int
    ssrc: int
    csrcs: List[int]
    extension_profile: Optional[int]
    extension_data: Optional[bytes]
    payload_offset: int
    payload: bytes

    @staticmethod
    def parse(raw: bytes) -> "RTPPacket":
        if len(raw) < 12:
            raise RTSPMalformedPacketError("RTP packet too short")
        b0 = raw[0]
        version = (b0 >> 6) & 0x03
        padding = (b0 >> 5) & 0x01
        extension = (b0 >> 4) & 0x01
        csrc_count = b0 & 0x0F
        b1 = raw[1]
        marker = (b1 >> 7) & 0x01
        payload_type = b1 & 0x7F
        sequence = int.from_bytes(raw[2:4], "big")
        timestamp = int.from_bytes(raw[4:8], "big")
        ssrc = int.from_bytes(raw[8:12], "big")
        offset = 12
        csrcs = []
        for _ in range(csrc_count):
            if offset + 4 > len(raw):
                raise RTSPMalformedPacketError('CSRC truncated')
            csrcs.append(int.from_bytes(raw[offset:offset+4], 'big'))
            offset += 4
        extension_profile = None
        extension_data = None
        if extension:
            if offset + 4 > len(raw):
                raise RTSPMalformedPacketError('extension header truncated')
            extension_profile = int.from_bytes(raw[offset:offset+2], 'big')
            ext_len = int.from_bytes(raw[offset+2:offset+4], 'big')
            offset += 4
            ext_bytes = ext_len * 4
            if offset + ext_bytes > len(raw):
                raise RTSPMalformedPacketError('extension contents truncated')
            extension_data = raw[offset:offset+ext_bytes]
            offset += ext_bytes
        payload_end = len(raw)
        if padding:
            pad_len = raw[-1]
            if pad_len == 0 or pad_len > len(raw) - offset:
                raise RTSPMalformedPacketError('Invalid RTP padding')
            payload_end = len(raw) - pad_len
        payload = raw[offset:payload_end]
        return RTPPacket(version, padding, extension, csrc_count, marker, payload_type,
                         sequence, timestamp, ssrc, csrcs, extension_profile, extension_data,
                         offset, payload)

@dataclass
class RTCPPacket:
    offset: int
    packet_type: int
    length: int  # in 32-bit words, minus one
    ssrc: Optional[int]

def iter_rtcp_packets(data: bytes) -> Iterator[RTCPPacket]:
    """Walk a compound RTCP chunk, yielding one header per packet.

    A header cut short by the end of the chunk raises RTSPMalformedPacketError
    after the complete packets before it have been yielded.
    """
    offset = 0
    while offset < len(data):
        if offset + 4 > len(data):
            raise RTSPMalformedPacketError(f'RTCP header truncated at offset {offset}')
        packet_type = data[offset + 1]
        length = int.from_bytes(data[offset+2:offset+4], 'big')
        ssrc = None
        if offset + 8 <= len(data):
            ssrc = int.from_bytes(data[offset+4:offset+8], 'big')
        yield RTCPPacket(offset, packet_type, length, ssrc)
        offset += (length + 1) * 4

def build_receiver_report(ssrc: int) -> bytes:
    """An empty Receiver Report (no report blocks) from *ssrc*."""
    version = 2
    report_count = 0
    length = 8 // 4 - 1
    return (bytes([(version << 6) | report_count, RTCP_RR])
            + length.to_bytes(2, 'big')
            + (ssrc & 0xFFFFFFFF).to_bytes(4, 'big'))

class RTPInterpreter:
    """Turns interleaved chunks for one negotiated track into sink calls.

    Reads the track but never changes it. Receiver reports go out through
    *send_data*, an awaitable ``(channel, bytes)`` callable.
    """

    def __init__(self,
                 track: TrackNegotiation,
                 ssrc: int,
                 send_data: Callable[[int, bytes], Awaitable[None]],
                 sink: Any = None,
                 on_rtp: Optional[Callable[[RTPPacket, int], Any]] = None):
        self.track = track
        self.ssrc = ssrc
        self.send_data = send_data
        self.sink = sink
        self.on_rtp = on_rtp

    async def handle(self, channel: int, data: bytes) -> None:
        if channel == self.track.control_channel:
            await self._handle_rtcp(data)
        elif channel == self.track.data_channel:
            self._handle_rtp(channel, data)
        else:
            log.debug('Ignoring %d bytes on unknown channel %d', len(data), channel)

    async def _handle_rtcp(self, data: bytes) -> None:
        try:
            for packet in iter_rtcp_packets(data):
                if packet.packet_type == RTCP_SR:
                    await self._send_receiver_report()
        except RTSPMalformedPacketError as exc:
            log.warning('Dropping rest of RTCP chunk: %s', exc)

    async def _send_receiver_report(self) -> None:
        try:
            await self.send_data(self.track.control_channel, build_receiver_report(self.ssrc))
        except Exception as exc:
            log.warning('Error writing RTCP receiver report: %s', exc)

    def _handle_rtp(self, channel: int, data: bytes) -> None:
        try:
            packet = RTPPacket.parse(data)
        except RTSPMalformedPacketError as exc:
            log.warning('Dropping malformed RTP packet: %s', exc)
            return
        if packet.payload_type != self.track.payload_type:
            log.warning('Ignoring RTP payload type %d (negotiated %d)',
                        packet.payload_type, self.track.payload_type)
            return
        if self.on_rtp:
            self.on_rtp(packet, channel)
        if 96 <= packet.payload_type <= 127 and self.track.codec == 'H264':
            if self.sink is not None:
                self.sink.on_frame_data(packet.payload)
        else:
            log.warning('No parser for RTP payload type %d', packet.payload_type)
