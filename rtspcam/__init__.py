"""rtspcam - RTSP/RTP client for H264 cameras

Public API:
  - RTSPClient: asyncio RTSP session (OPTIONS/DESCRIBE/SETUP/PLAY over interleaved TCP)
  - SessionState: client state machine states
  - AnnexBWriter: sink writing the received video as an Annex-B stream
  - build_authorization / AuthChallenge: Basic and Digest credentials
  - negotiate: SDP video track selection
  - RTPPacket, build_receiver_report: RTP/RTCP helpers
  - parse_rtsp_url: utility parser
"""

from .session import RTSPClient, SessionState
from .sink import AnnexBWriter, Sink
from .auth import AuthChallenge, build_authorization, parse_www_authenticate
from .sdp import ParameterSets, TrackNegotiation, negotiate
from .rtp import RTPPacket, RTPInterpreter, build_receiver_report, iter_rtcp_packets
from .transport import InterleavedTransport
from .utils import parse_rtsp_url
from .exceptions import *

__all__ = [
    "RTSPClient", "SessionState",
    "AnnexBWriter", "Sink",
    "AuthChallenge", "build_authorization", "parse_www_authenticate",
    "ParameterSets", "TrackNegotiation", "negotiate",
    "RTPPacket", "RTPInterpreter", "build_receiver_report", "iter_rtcp_packets",
    "InterleavedTransport",
    "parse_rtsp_url",
    # exceptions
    "RTSPError", "RTSPValidationError", "RTSPTransportError", "RTSPConnectError",
    "RTSPProtocolError", "RTSPMalformedPacketError", "RTSPAuthError",
]
