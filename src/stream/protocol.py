"""
NATS text protocol framing as used by the pump.fun feed (NATS over WebSocket).

Frames are `\\r\\n`-terminated control lines. `MSG`/`HMSG` lines announce a byte count and are
followed by exactly that many payload bytes plus a trailing `\\r\\n`. Payloads are sliced by the
declared length, never by scanning for a delimiter, because payloads can contain `\\r\\n`.
"""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass
from typing import Any

from src.domain.errors import ProtocolParseError

CRLF = b"\r\n"
# NATS servers reject control lines longer than this by default.
MAX_CONTROL_LINE = 4096

PING = "PING\r\n"
PONG = "PONG\r\n"


class FrameType(enum.Enum):
    INFO = "INFO"
    PING = "PING"
    PONG = "PONG"
    MSG = "MSG"
    HMSG = "HMSG"
    OK = "+OK"
    ERR = "-ERR"
    UNKNOWN = "UNKNOWN"


_CONTROL_TYPES = {
    b"INFO": FrameType.INFO,
    b"PING": FrameType.PING,
    b"PONG": FrameType.PONG,
    b"+OK": FrameType.OK,
    b"-ERR": FrameType.ERR,
}


@dataclass(frozen=True)
class Frame:
    type: FrameType
    line: str
    args: str = ""
    subject: str | None = None
    sid: str | None = None
    reply_to: str | None = None
    payload: bytes = b""
    headers: bytes = b""


def _byte_count(token: bytes, line: bytes) -> int:
    try:
        n = int(token)
    except ValueError:
        raise ProtocolParseError(f"Non-numeric byte count in {line[:200]!r}", raw=line) from None
    if n < 0:
        raise ProtocolParseError(f"Negative byte count in {line[:200]!r}", raw=line)
    return n


def _sid(token: bytes, line: bytes) -> str:
    try:
        return token.decode("ascii")
    except UnicodeDecodeError:
        raise ProtocolParseError(f"Non-ASCII subscription id in {line[:200]!r}", raw=line) from None


def _parse_msg_header(line: bytes) -> tuple[FrameType, str, str, str | None, int, int]:
    """Return (type, subject, sid, reply_to, header_bytes, total_bytes) for a MSG/HMSG line."""
    parts = line.split()
    op = parts[0].upper()
    if op == b"MSG":
        if len(parts) == 4:
            _, subject, sid, total = parts
            reply = None
        elif len(parts) == 5:
            _, subject, sid, reply_b, total = parts
            reply = reply_b.decode("utf-8", errors="replace")
        else:
            raise ProtocolParseError(f"Malformed MSG header: {line[:200]!r}", raw=line)
        return FrameType.MSG, subject.decode("utf-8", errors="replace"), _sid(sid, line), reply, 0, _byte_count(total, line)

    if len(parts) == 5:
        _, subject, sid, hdr, total = parts
        reply = None
    elif len(parts) == 6:
        _, subject, sid, reply_b, hdr, total = parts
        reply = reply_b.decode("utf-8", errors="replace")
    else:
        raise ProtocolParseError(f"Malformed HMSG header: {line[:200]!r}", raw=line)
    hdr_n = _byte_count(hdr, line)
    total_n = _byte_count(total, line)
    if hdr_n > total_n:
        raise ProtocolParseError(f"HMSG header size exceeds total size: {line[:200]!r}", raw=line)
    return FrameType.HMSG, subject.decode("utf-8", errors="replace"), _sid(sid, line), reply, hdr_n, total_n


class FrameParser:
    """
    Incremental frame parser.

    `feed()` appends raw socket data; `next_frame()` returns the next complete frame, `None`
    when more data is needed, or raises `ProtocolParseError` after discarding the bad frame so
    the caller can log it and keep reading.
    """

    def __init__(self) -> None:
        self._buf = bytearray()

    def __len__(self) -> int:
        return len(self._buf)

    def reset(self) -> None:
        self._buf.clear()

    def feed(self, data: str | bytes) -> None:
        if isinstance(data, str):
            data = data.encode("utf-8")
        self._buf.extend(data)

    def next_frame(self) -> Frame | None:
        buf = self._buf
        while True:
            idx = buf.find(CRLF)
            if idx < 0:
                if len(buf) > MAX_CONTROL_LINE:
                    raw = bytes(buf[:200])
                    buf.clear()
                    raise ProtocolParseError("Control line exceeds maximum length", raw=raw)
                return None
            line = bytes(buf[:idx])
            if not line.strip():
                del buf[: idx + 2]
                continue
            break

        op = line.split(None, 1)[0].upper()
        if op in (b"MSG", b"HMSG"):
            return self._take_message(line, idx)

        del buf[: idx + 2]
        text = line.decode("utf-8", errors="replace")
        frame_type = _CONTROL_TYPES.get(op, FrameType.UNKNOWN)
        parts = text.split(None, 1)
        args = parts[1].strip() if len(parts) > 1 else ""
        return Frame(type=frame_type, line=text, args=args)

    def _take_message(self, line: bytes, idx: int) -> Frame | None:
        buf = self._buf
        try:
            frame_type, subject, sid, reply, hdr_n, total_n = _parse_msg_header(line)
        except ProtocolParseError:
            del buf[: idx + 2]
            raise
        except ValueError as exc:
            del buf[: idx + 2]
            raise ProtocolParseError(f"Unreadable message header {line[:200]!r}: {exc}", raw=line) from exc

        start = idx + 2
        end = start + total_n
        if len(buf) < end + 2:
            return None
        if bytes(buf[end : end + 2]) != CRLF:
            # Declared length does not line up with the data; skip to the next line boundary.
            del buf[:end]
            nxt = buf.find(CRLF)
            if nxt < 0:
                buf.clear()
            else:
                del buf[: nxt + 2]
            raise ProtocolParseError(
                f"Payload length mismatch for {line[:200]!r}: declared {total_n} bytes", raw=line
            )

        block = bytes(buf[start:end])
        del buf[: end + 2]
        return Frame(
            type=frame_type,
            line=line.decode("utf-8", errors="replace"),
            args=line.split(None, 1)[1].decode("utf-8", errors="replace"),
            subject=subject,
            sid=sid,
            reply_to=reply,
            payload=block[hdr_n:],
            headers=block[:hdr_n],
        )


def connect_command(options: dict[str, Any]) -> str:
    return f"CONNECT {json.dumps(options, separators=(',', ':'))}\r\n"


def sub_command(topic: str, sid: str) -> str:
    return f"SUB {topic} {sid}\r\n"


def subject_matches(pattern: str, subject: str) -> bool:
    """NATS subject matching: `*` matches one token, a trailing `>` matches one or more tokens."""
    p_tokens = pattern.split(".")
    s_tokens = subject.split(".")
    for i, p in enumerate(p_tokens):
        if p == ">":
            return i == len(p_tokens) - 1 and len(s_tokens) > i
        if i >= len(s_tokens):
            return False
        if p != "*" and p != s_tokens[i]:
            return False
    return len(p_tokens) == len(s_tokens)
