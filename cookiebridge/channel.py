"""
Client end of the native messaging channel.

Launches the native host as a child process, the way the browser does, and
exchanges framed messages over its stdin/stdout. A broken channel is dropped
and re-established on the next send.
"""

import os
import sys
import subprocess
import threading
import logging
from typing import Any, Dict, List, Optional

from cookiebridge.framing import FrameDecoder, FramingViolation, MalformedFrame, encode_message
from . import config

logger = logging.getLogger(__name__)


class ChannelDisconnected(Exception):
    """The host process is gone or the pipe broke. Reconnect on the next send."""


def default_host_command() -> List[str]:
    return [sys.executable, "-m", "cookiebridge.main", "host"]


class NativeHostChannel:
    """Request/response channel to one host process."""

    def __init__(self, command: Optional[List[str]] = None, env: Optional[Dict[str, str]] = None):
        self.command = command or default_host_command()
        self.env = env
        self._process: Optional[subprocess.Popen] = None
        self._decoder: Optional[FrameDecoder] = None
        self._lock = threading.Lock()

    @property
    def connected(self) -> bool:
        return self._process is not None and self._process.poll() is None

    def connect(self) -> None:
        """Start the host process unless one is already running."""
        if self.connected:
            return
        self.close()
        logger.info(f"Connecting to native host: {' '.join(self.command)}")
        try:
            self._process = subprocess.Popen(
                self.command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
                env=dict(os.environ, **self.env) if self.env else None,
            )
        except OSError as e:
            self._process = None
            raise ChannelDisconnected(f"Failed to start native host: {e}") from e
        self._decoder = FrameDecoder()

    def send(self, message: Dict[str, Any]) -> Dict[str, Any]:
        """
        Send one message and wait for the host's response.

        Raises:
            ChannelDisconnected: If the host cannot be started, the pipe breaks,
                or the host closes the stream or violates the framing
        """
        with self._lock:
            self.connect()
            try:
                self._process.stdin.write(encode_message(message))
                self._process.stdin.flush()
                return self._read_response()
            except (OSError, ValueError, FramingViolation) as e:
                # ValueError: write to a pipe that was already closed
                self.close()
                raise ChannelDisconnected(f"Native host disconnected: {e}") from e

    def _read_response(self) -> Dict[str, Any]:
        stdout = self._process.stdout
        read = getattr(stdout, 'read1', None) or stdout.read
        while True:
            chunk = read(config.READ_CHUNK_SIZE)
            if not chunk:
                raise OSError("Native host closed the stream")
            messages = self._decoder.feed(chunk)
            if messages:
                if len(messages) > 1:
                    logger.warning(f"Discarding {len(messages) - 1} unexpected responses")
                response = messages[0]
                if isinstance(response, MalformedFrame) or not isinstance(response, dict):
                    raise OSError("Native host sent an invalid response")
                return response

    def close(self) -> None:
        process, self._process = self._process, None
        self._decoder = None
        if process is None:
            return
        for stream in (process.stdin, process.stdout):
            try:
                if stream:
                    stream.close()
            except OSError:
                pass
        try:
            process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            logger.warning("Native host did not exit, terminating it")
            process.kill()
            process.wait()
