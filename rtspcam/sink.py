"""Downstream consumers of decoded video."""

from __future__ import annotations

from typing import BinaryIO, Protocol

START_CODE = b'\x00\x00\x00\x01'

class Sink(Protocol):
    def on_parameter_sets(self, sps: bytes, pps: bytes) -> None: ...

    def on_frame_data(self, data: bytes) -> None: ...

class AnnexBWriter:
    """Write parameter sets and RTP payloads to *stream* as an Annex-B byte stream."""

    def __init__(self, stream: BinaryIO):
        self.stream = stream
        self.frames = 0

    def on_parameter_sets(self, sps: bytes, pps: bytes) -> None:
        self.stream.write(START_CODE + sps)
        self.stream.write(START_CODE + pps)

    def on_frame_data(self, data: bytes) -> None:
        self.stream.write(START_CODE + data)
        self.frames += 1
