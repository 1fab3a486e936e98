"""RTSP-specific exception hierarchy."""

class RTSPError(Exception):
    """Base RTSP exception."""
    pass

class RTSPValidationError(RTSPError):
    """Raised when input validation fails."""
    pass

class RTSPProtocolError(RTSPError):
    """Raised on non-2xx replies and when message, SDP or packet parsing fails."""
    pass

class RTSPMalformedPacketError(RTSPProtocolError):
    """A truncated or otherwise unparsable RTP/RTCP chunk."""
    pass

class RTSPAuthError(RTSPError):
    """Credentials were rejected after an authenticated retry."""
    pass

class RTSPTransportError(RTSPError):
    """Transport-level errors (socket/connect/send/receive)."""
    pass

class RTSPConnectError(RTSPTransportError):
    """Connecting to the server timed out or was refused."""
    pass
