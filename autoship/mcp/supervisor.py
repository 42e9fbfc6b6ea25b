"""Child process lifecycle for the stdio tool-provider."""

from __future__ import annotations

import logging
import os
import re
import subprocess
import threading
from typing import Any, Callable, Dict, List, Optional

from autoship.mcp.framing import LineFramer, TransportError, encode_message

logger = logging.getLogger(__name__)

READ_CHUNK = 65536
TERMINATE_TIMEOUT = 5.0

# Advisory only: decides which stderr lines reach the operator
STDERR_ERROR_PATTERN = re.compile(r"error|exception|traceback|fatal", re.IGNORECASE)


class StartupError(Exception):
    """The tool-provider could not be launched or connected to."""


class ProcessSupervisor:
    """
    Owns the tool-provider subprocess and its three pipes.

    Stdout is read only by the reader thread, which feeds a ``LineFramer``
    and hands each message to ``on_message``. Stderr is a diagnostic
    channel. ``send`` serializes writes to stdin. ``close`` may be called
    any number of times.
    """

    def __init__(
        self,
        command: List[str],
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[str] = None,
    ):
        if not command:
            raise StartupError("No tool-provider command configured")
        self.command = list(command)
        self.env = env or {}
        self.cwd = cwd
        self._process: Optional[subprocess.Popen] = None
        self._framer = LineFramer()
        self._on_message: Optional[Callable[[Dict[str, Any]], None]] = None
        self._write_lock = threading.Lock()
        self._threads: List[threading.Thread] = []
        self._closing = False
        self._closed = False

    # ── Lifecycle ─────────────────────────────────────────────────────────

    def start(self, on_message: Callable[[Dict[str, Any]], None]) -> None:
        """Spawn the child and begin pumping its output."""
        if self._process is not None:
            raise StartupError("Tool-provider already started")

        self._on_message = on_message
        merged_env = {**os.environ, **self.env}
        logger.info("Starting tool-provider: %s", " ".join(self.command))
        try:
            self._process = subprocess.Popen(
                self.command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=merged_env,
                cwd=self.cwd,
            )
        except OSError as exc:
            raise StartupError(f"Failed to start tool-provider {self.command[0]!r}: {exc}") from exc

        self._threads = [
            threading.Thread(target=self._pump_stdout, name="mcp-stdout", daemon=True),
            threading.Thread(target=self._pump_stderr, name="mcp-stderr", daemon=True),
        ]
        for thread in self._threads:
            thread.start()

    def close(self) -> None:
        """Terminate and reap the child. Safe to call repeatedly."""
        if self._closed:
            return
        self._closed = True
        self._closing = True

        process = self._process
        if process is None:
            return

        if process.stdin:
            try:
                process.stdin.close()
            except OSError:
                pass

        if process.poll() is None:
            process.terminate()
            try:
                process.wait(timeout=TERMINATE_TIMEOUT)
            except subprocess.TimeoutExpired:
                process.kill()
                process.wait()

        for thread in self._threads:
            thread.join(timeout=1.0)
        for pipe in (process.stdout, process.stderr):
            if pipe:
                try:
                    pipe.close()
                except OSError:
                    pass
        logger.info("Tool-provider stopped (exit code %s)", process.returncode)

    def __enter__(self) -> "ProcessSupervisor":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.poll() is None

    @property
    def returncode(self) -> Optional[int]:
        if self._process is None:
            return None
        return self._process.poll()

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    # ── Outbound ──────────────────────────────────────────────────────────

    def send(self, message: Dict[str, Any]) -> None:
        """Write one message to the child's stdin as a single line."""
        data = encode_message(message)
        with self._write_lock:
            if self._closed or self._process is None or self._process.stdin is None:
                raise TransportError("Tool-provider is not running")
            try:
                self._process.stdin.write(data)
                self._process.stdin.flush()
            except (BrokenPipeError, OSError, ValueError) as exc:
                raise TransportError(f"Failed to write to tool-provider: {exc}") from exc

    # ── Reader threads ────────────────────────────────────────────────────

    def _pump_stdout(self) -> None:
        process = self._process
        fd = process.stdout.fileno()
        while True:
            try:
                chunk = os.read(fd, READ_CHUNK)
            except (OSError, ValueError):
                break
            if not chunk:
                break
            for message in self._framer.feed(chunk):
                try:
                    self._on_message(message)
                except Exception:
                    logger.exception("Message handler failed")

        returncode = process.wait()
        if returncode != 0 and not self._closing:
            logger.warning("Tool-provider exited with code %s", returncode)
        else:
            logger.debug("Tool-provider output closed (exit code %s)", returncode)

    def _pump_stderr(self) -> None:
        try:
            for raw in iter(self._process.stderr.readline, b""):
                line = raw.decode("utf-8", errors="replace").rstrip()
                if not line:
                    continue
                if STDERR_ERROR_PATTERN.search(line):
                    logger.warning("[mcp] %s", line)
                else:
                    logger.debug("[mcp] %s", line)
        except (OSError, ValueError):
            # pipe closed underneath us during teardown
            pass
