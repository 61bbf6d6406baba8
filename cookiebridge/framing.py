"""
Length-prefixed message framing for the native messaging channel.

Each message is a 4-byte little-endian unsigned length followed by exactly that
many bytes of UTF-8 JSON. Both ends of the channel use this module.
"""

import json
import struct
import logging
from dataclasses import dataclass
from typing import Any, List, Optional

from . import config

logger = logging.getLogger(__name__)

HEADER = struct.Struct('<I')

# Decoder states
AWAITING_LENGTH = "AWAITING_LENGTH"
AWAITING_BODY = "AWAITING_BODY"
TERMINATED = "TERMINATED"


class FramingViolation(Exception):
    """A declared length was zero or exceeded the limit. Fatal to the stream."""

    def __init__(self, message: str, length: Optional[int] = None, decoded: Optional[List[Any]] = None):
        super().__init__(message)
        self.length = length
        # Payloads completed in the same read event before the bad header
        self.decoded = decoded or []


@dataclass
class MalformedFrame:
    """A correctly framed body that is not valid UTF-8 JSON."""
    raw: bytes
    reason: str


def encode_message(payload: Any, max_size: int = config.MAX_MESSAGE_SIZE) -> bytes:
    """
    Serialise payload to UTF-8 JSON and prefix it with its byte length.

    Raises:
        FramingViolation: If the encoded body is larger than max_size
    """
    body = json.dumps(payload, separators=(',', ':')).encode('utf-8')
    if len(body) > max_size:
        raise FramingViolation(f"Message too large: {len(body)} bytes (limit {max_size})", len(body))
    return HEADER.pack(len(body)) + body


def decode_body(body: bytes) -> Any:
    """Parse one frame body, returning a MalformedFrame instead of raising."""
    try:
        return json.loads(body.decode('utf-8'))
    except UnicodeDecodeError as e:
        return MalformedFrame(body, f"Invalid UTF-8: {e}")
    except ValueError as e:
        return MalformedFrame(body, f"Invalid JSON: {e}")


class FrameDecoder:
    """
    Incremental decoder fed with whatever chunks the transport delivers.

    Keeps partial input in a growing buffer and returns every message completed
    by a chunk. After a framing violation the decoder is terminated and rejects
    further input.
    """

    def __init__(self, max_size: int = config.MAX_MESSAGE_SIZE):
        self.max_size = max_size
        self._buffer = bytearray()
        self._expected: Optional[int] = None
        self._error: Optional[FramingViolation] = None

    @property
    def state(self) -> str:
        if self._error is not None:
            return TERMINATED
        if self._expected is None:
            return AWAITING_LENGTH
        return AWAITING_BODY

    @property
    def buffered(self) -> int:
        """Number of bytes held while waiting for the rest of a message."""
        return len(self._buffer)

    def feed(self, chunk: bytes) -> List[Any]:
        """
        Append chunk and return the decoded payloads of all completed messages.

        Bodies that are not valid JSON are returned as MalformedFrame items.

        Raises:
            FramingViolation: On a zero or oversized declared length, or when
                called again after such a violation
        """
        if self._error is not None:
            raise FramingViolation(f"Stream terminated: {self._error}", self._error.length)

        self._buffer.extend(chunk)
        messages = []

        while True:
            if self._expected is None:
                if len(self._buffer) < HEADER.size:
                    break
                (length,) = HEADER.unpack_from(self._buffer, 0)
                if length == 0 or length > self.max_size:
                    self._error = FramingViolation(f"Invalid message length: {length}", length, messages)
                    self._buffer.clear()
                    logger.warning(f"Framing violation, declared length {length}")
                    raise self._error
                self._expected = length

            end = HEADER.size + self._expected
            if len(self._buffer) < end:
                break

            body = bytes(self._buffer[HEADER.size:end])
            del self._buffer[:end]
            self._expected = None
            messages.append(decode_body(body))

        return messages
