"""
DJ Controller Link - Protocol Module
Single-byte command alphabet spoken over the serial line.

Every command is one ASCII character. The desktop never sends absolute
values; counters on both ends are nudged by one per byte.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from config import SEEK_STEP_SECONDS


# ================= OUTBOUND =================

class Command(Enum):
    PLAY = b"P"
    PAUSE = b"S"
    NEXT = b"N"          # shortcut cursor step, wraps
    PREV = b"B"
    TOTAL_UP = b"T"
    TOTAL_DOWN = b"D"
    CURSOR_UP = b"C"
    CURSOR_DOWN = b"V"
    BEAT = b"b"
    STATUS_REQUEST = b"Q"


def encode_command(command: Command) -> bytes:
    return command.value


def play_state_command(is_playing: bool) -> Command:
    return Command.PLAY if is_playing else Command.PAUSE


# ================= INBOUND =================

class EventKind(Enum):
    PLAY = "play"
    PAUSE = "pause"
    NEXT_TRACK = "next_track"
    PREV_TRACK = "prev_track"
    SEEK_RELATIVE = "seek_relative"
    STATUS_REQUEST = "status_request"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class InboundEvent:
    kind: EventKind
    seconds: int = 0               # SEEK_RELATIVE only
    raw: Optional[int] = None      # the byte as received

    @property
    def is_unknown(self):
        return self.kind is EventKind.UNKNOWN

    def __str__(self):
        if self.kind is EventKind.SEEK_RELATIVE:
            return f"seek_relative({self.seconds:+d}s)"
        if self.kind is EventKind.UNKNOWN:
            return f"unknown({_printable(self.raw)})"
        return self.kind.value


_DECODE_TABLE = {
    ord("P"): (EventKind.PLAY, 0),
    ord("S"): (EventKind.PAUSE, 0),
    ord("N"): (EventKind.NEXT_TRACK, 0),
    ord("B"): (EventKind.PREV_TRACK, 0),
    ord("F"): (EventKind.SEEK_RELATIVE, SEEK_STEP_SECONDS),
    ord("R"): (EventKind.SEEK_RELATIVE, -SEEK_STEP_SECONDS),
    ord("Q"): (EventKind.STATUS_REQUEST, 0),
}


def decode(byte) -> InboundEvent:
    """Map one received byte to an event. Never raises for a single byte."""
    if isinstance(byte, (bytes, bytearray)):
        if len(byte) != 1:
            raise ValueError(f"decode() takes exactly one byte, got {len(byte)}")
        byte = byte[0]
    byte = int(byte) & 0xFF
    kind, seconds = _DECODE_TABLE.get(byte, (EventKind.UNKNOWN, 0))
    return InboundEvent(kind, seconds, byte)


def decode_stream(data) -> list:
    return [decode(b) for b in bytes(data)]


def _printable(byte):
    if byte is None:
        return "?"
    if 0x20 <= byte < 0x7F:
        return f"'{chr(byte)}'"
    return f"0x{byte:02X}"
