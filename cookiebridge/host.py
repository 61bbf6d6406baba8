"""
Native messaging host: receives cookie snapshots from the browser monitor and
persists them in the credential store.

Protocol: stdin/stdout with 4-byte little-endian length prefix + JSON.
Nothing but framed messages may be written to the output stream.
"""

import sys
import logging
from typing import Any, BinaryIO, Dict, Optional

from cookiebridge.framing import FrameDecoder, FramingViolation, MalformedFrame, encode_message
from cookiebridge.models import MalformedMessage, ack_message, error_message, parse_sync_message
from cookiebridge.storage import AuthStore
from . import config

logger = logging.getLogger(__name__)


class NativeHost:
    """
    One IPC session over a pair of binary streams.

    Messages are handled strictly in arrival order. A malformed message is
    answered with an ERROR and the session continues; a framing violation is
    answered with an ERROR and ends the session.
    """

    def __init__(self, store: AuthStore, instream: Optional[BinaryIO] = None,
                 outstream: Optional[BinaryIO] = None, chunk_size: int = config.READ_CHUNK_SIZE):
        self.store = store
        self.instream = instream if instream is not None else sys.stdin.buffer
        self.outstream = outstream if outstream is not None else sys.stdout.buffer
        self.chunk_size = chunk_size
        self.decoder = FrameDecoder()
        self.handled = 0

    def _read_chunk(self) -> bytes:
        read = getattr(self.instream, 'read1', None) or self.instream.read
        return read(self.chunk_size)

    def send(self, message: Dict[str, Any]) -> None:
        self.outstream.write(encode_message(message))
        self.outstream.flush()

    def run(self) -> int:
        """
        Process messages until the input stream closes.

        Returns:
            0 when the peer closed the stream, 1 after a framing violation
        """
        logger.info("Native host session started")
        while True:
            chunk = self._read_chunk()
            if not chunk:
                if self.decoder.buffered:
                    logger.warning(f"Stream closed with {self.decoder.buffered} bytes of an incomplete message")
                break

            try:
                payloads = self.decoder.feed(chunk)
            except FramingViolation as e:
                for payload in e.decoded:
                    self.dispatch(payload)
                logger.error(f"Protocol violation, ending session: {e}")
                self.send(error_message(str(e)))
                return 1

            for payload in payloads:
                self.dispatch(payload)

        logger.info(f"Native host session finished after {self.handled} messages")
        return 0

    def dispatch(self, payload: Any) -> None:
        """Handle one decoded payload and write exactly one response."""
        self.handled += 1
        self.send(self.handle_message(payload))

    def handle_message(self, payload: Any) -> Dict[str, Any]:
        if isinstance(payload, MalformedFrame):
            logger.warning(f"Unparseable message: {payload.reason}")
            return error_message(payload.reason)

        try:
            message = parse_sync_message(payload)
        except MalformedMessage as e:
            logger.warning(f"Rejected message: {e}")
            return error_message(str(e))

        logger.info(f"Received {len(message.cookies)} cookies for domain: {message.domain}")
        try:
            site = self.store.sync_site(message.domain, message.cookies, message.timestamp)
        except ValueError as e:
            logger.warning(f"Rejected message: {e}")
            return error_message(str(e))
        except Exception as e:
            logger.error(f"Failed to save cookies for {message.domain}: {e}", exc_info=True)
            return error_message(f"Failed to save cookies: {e}")

        return ack_message(len(site.cookies), site.domain)
