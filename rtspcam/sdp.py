"""Minimal SDP parser and video track negotiation for RTSP DESCRIBE results."""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Any, Optional, Tuple

log = logging.getLogger("rtspcam.sdp")

SUPPORTED_VIDEO_CODECS = ("H264",)

# interleaved channel pair reserved for the single negotiated track
DATA_CHANNEL = 0
CONTROL_CHANNEL = 1

@dataclass
class MediaDesc:
    type: str
    port: int
    proto: str
    fmt: List[str]
    attrs: List[Tuple[str, str]] = field(default_factory=list)

    def attr(self, key: str) -> Optional[str]:
        for k, v in self.attrs:
            if k == key:
                return v
        return None

@dataclass
class TrackNegotiation:
    codec: str = ""
    payload_type: int = -1
    data_channel: int = DATA_CHANNEL
    control_channel: int = CONTROL_CHANNEL
    control_url: str = ""

    @property
    def negotiated(self) -> bool:
        return self.payload_type != -1

@dataclass
class ParameterSets:
    sps: bytes
    pps: bytes

def parse_sdp(sdp_text: str) -> Dict[str, Any]:
    session: Dict[str, Any] = {}
    media_list: List[MediaDesc] = []
    current_media = None
    for raw in sdp_text.splitlines():
        line = raw.strip()
        if len(line) < 2 or line[1] != '=':
            continue
        prefix, value = line[0], line[2:]
        if prefix == 'v':
            session['version'] = value
        elif prefix == 'o':
            session['origin'] = value
        elif prefix == 's':
            session['session_name'] = value
        elif prefix == 't':
            session['timing'] = value
        elif prefix == 'a':
            k, _, v = value.partition(':')
            if current_media is None:
                session.setdefault('attrs', {})[k] = v
            else:
                current_media.attrs.append((k, v))
        elif prefix == 'm':
            parts = value.split()
            if len(parts) >= 4:
                try:
                    port = int(parts[1].split('/')[0])
                except ValueError:
                    log.warning("Skipping media line with bad port: %r", line)
                    current_media = None
                    continue
                current_media = MediaDesc(type=parts[0], port=port, proto=parts[2], fmt=parts[3:])
                media_list.append(current_media)
            else:
                # attributes after a bad m= line must not leak onto the session
                current_media = MediaDesc(type='', port=0, proto='', fmt=[])
    return {'session': session, 'media': media_list}

def resolve_control(control: str, request_url: str, content_base: Optional[str] = None) -> str:
    """Turn an a=control value into an absolute RTSP URL."""
    if control.lower().startswith('rtsp://'):
        return control
    if content_base:
        return content_base + control
    return request_url + '/' + control

def parse_fmtp_params(fmtp: str) -> Dict[str, str]:
    """Parse ``96 packetization-mode=1;sprop-parameter-sets=...`` into a dict."""
    _, _, params = fmtp.strip().partition(' ')
    result = {}
    for item in params.split(';'):
        key, sep, value = item.strip().partition('=')
        if sep:
            result[key.strip().lower()] = value.strip()
    return result

def parse_sprop_parameter_sets(fmtp: str) -> Optional[ParameterSets]:
    sprop = parse_fmtp_params(fmtp).get('sprop-parameter-sets')
    if not sprop:
        return None
    entries = [e.strip() for e in sprop.split(',') if e.strip()]
    if len(entries) < 2:
        return None
    try:
        sps = base64.b64decode(entries[0])
        pps = base64.b64decode(entries[1])
    except (binascii.Error, ValueError) as exc:
        log.warning("Undecodable sprop-parameter-sets %r: %s", sprop, exc)
        return None
    return ParameterSets(sps=sps, pps=pps)

def negotiate(sdp_text: str, request_url: str,
              content_base: Optional[str] = None) -> Tuple[Optional[TrackNegotiation], Optional[ParameterSets]]:
    """Pick the video track to SETUP from a DESCRIBE body.

    Only the first video media description is considered, even when a later
    one carries a supported codec. Returns (None, ...) when that description
    has no supported rtpmap.
    """
    parsed = parse_sdp(sdp_text)
    video = next((m for m in parsed['media'] if m.type == 'video'), None)
    if video is None:
        log.info("SDP has no video media")
        return None, None

    track = TrackNegotiation(control_url=request_url)
    fmtps = {}
    for key, value in video.attrs:
        if key == 'control':
            track.control_url = resolve_control(value.strip(), request_url, content_base)
        elif key == 'fmtp':
            pt, _, _ = value.strip().partition(' ')
            fmtps[pt] = value
        elif key == 'rtpmap':
            pt, _, encoding = value.strip().partition(' ')
            codec = encoding.split('/')[0].strip()
            if codec in SUPPORTED_VIDEO_CODECS:
                try:
                    track.payload_type = int(pt)
                except ValueError:
                    log.warning("Bad rtpmap payload type %r", pt)
                    continue
                track.codec = codec

    params = None
    fmtp = fmtps.get(str(track.payload_type))
    if track.codec == 'H264' and fmtp is not None:
        params = parse_sprop_parameter_sets(fmtp)

    if not track.negotiated:
        log.warning("First video media has no supported codec (supported: %s)",
                    ", ".join(SUPPORTED_VIDEO_CODECS))
        return None, params
    return track, params
