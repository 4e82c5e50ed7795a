"""
Supervision of one hledger-web process serving a single journal file.

The process is spawned with its JSON API enabled. Requests are only sent
once the process printed its ready line; a timed out or refused request
restarts the process and is retried once.
"""

from collections.abc import Callable
from enum import Enum
from pathlib import Path
from typing import Any, Optional
import logging
import subprocess
import threading
import time

import httpx
from pydantic import ValidationError

from ..config import LedgerSettings
from ..models.recorded_transaction import RecordedTransaction
from ..utils.exceptions import LedgerEngineError, LedgerProcessNotReady

logger = logging.getLogger(__name__)

# Commodities hledger reports that are not real commodities
IGNORED_COMMODITIES = {"AUTO"}

PopenFactory = Callable[[list[str]], subprocess.Popen]


class ProcessState(Enum):
    """Lifecycle of a supervised process."""

    STARTING = "starting"
    READY = "ready"
    RESTARTING = "restarting"
    TERMINATED = "terminated"


def default_popen(command: list[str]) -> subprocess.Popen:
    return subprocess.Popen(
        command,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
        bufsize=1,
    )


class LedgerProcess:
    """One hledger-web process bound to a journal file and port."""

    def __init__(
        self,
        journal_file: Path,
        port: int,
        settings: LedgerSettings,
        transport: Optional[httpx.BaseTransport] = None,
        popen: PopenFactory = default_popen,
    ):
        """
        Spawn the process.

        Args:
            journal_file: Journal the process serves
            port: Local port for its HTTP API
            settings: Ledger settings (executable, timeouts, ready marker)
            transport: httpx transport override
            popen: Factory spawning the process from a command line
        """
        self.journal_file = journal_file
        self.port = port
        self.settings = settings
        self._popen = popen
        self._client = httpx.Client(
            base_url=f"http://{settings.host}:{port}",
            timeout=settings.read_timeout_seconds,
            transport=transport,
        )

        self._state = ProcessState.STARTING
        self._state_changed = threading.Condition()
        self._process_lock = threading.Lock()
        self._process: Optional[subprocess.Popen] = None
        self._generation = 0

        # Held by callers around a write and its restart-retry
        self.write_lock = threading.Lock()

        with self._process_lock:
            self._spawn()

    def __repr__(self) -> str:
        return (
            f"LedgerProcess({str(self.journal_file)!r}, port={self.port}, "
            f"state={self.state.value})"
        )

    @property
    def state(self) -> ProcessState:
        with self._state_changed:
            return self._state

    @property
    def pid(self) -> Optional[int]:
        process = self._process
        return process.pid if process is not None else None

    @property
    def command(self) -> list[str]:
        return [
            self.settings.executable,
            "--serve-api",
            "--port",
            str(self.port),
            "-f",
            str(self.journal_file),
            *self.settings.extra_args,
        ]

    # State machine

    def _transition(
        self,
        new_state: ProcessState,
        expected: Optional[set[ProcessState]] = None,
        generation: Optional[int] = None,
    ) -> bool:
        """
        Move to ``new_state``.

        The move is skipped if the current state is not in ``expected`` or if
        ``generation`` names a process that has since been replaced.
        """
        with self._state_changed:
            if generation is not None and generation != self._generation:
                return False
            if expected is not None and self._state not in expected:
                return False
            if self._state is ProcessState.TERMINATED:
                return False
            logger.debug(
                f"{self.journal_file} ({self.port}): {self._state.value} -> {new_state.value}"
            )
            self._state = new_state
            self._state_changed.notify_all()
            return True

    def wait_until_ready(self, timeout: Optional[float] = None) -> None:
        """
        Block until the process is ready to serve requests.

        Args:
            timeout: Seconds to wait, defaults to the configured ready timeout
                (None waits forever)

        Raises:
            LedgerProcessNotReady: If the timeout expires first
            LedgerEngineError: If the process has been terminated
        """
        if timeout is None:
            timeout = self.settings.ready_timeout_seconds
        deadline = None if timeout is None else time.monotonic() + timeout

        with self._state_changed:
            while self._state is not ProcessState.READY:
                if self._state is ProcessState.TERMINATED:
                    raise LedgerEngineError(f"hledger-web for {self.journal_file} was terminated")
                wait_for = self.settings.poll_interval_seconds
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise LedgerProcessNotReady(
                            f"hledger-web for {self.journal_file} on {self.port} "
                            f"not ready after {timeout}s"
                        )
                    wait_for = min(wait_for, remaining)
                logger.info(
                    f"Waiting for hledger-web process for {self.journal_file} on {self.port}..."
                )
                self._state_changed.wait(wait_for)

    # Process handling

    def _spawn(self) -> None:
        """Start a new process; caller holds the process lock."""
        with self._state_changed:
            self._generation += 1
            generation = self._generation
        self._transition(ProcessState.STARTING)

        try:
            process = self._popen(self.command)
        except OSError as e:
            raise LedgerEngineError(f"Couldn't start {self.settings.executable}: {e}") from e
        self._process = process

        reader = threading.Thread(
            target=self._watch_output,
            args=(process, generation),
            name=f"hledger-web-{self.port}-{generation}",
            daemon=True,
        )
        reader.start()

    def _watch_output(self, process: subprocess.Popen, generation: int) -> None:
        """Follow the process output, flipping to READY on the ready line."""
        if process.stdout is None:
            logger.error(f"Couldn't capture hledger-web stdout for {self.journal_file}")
            return

        for line in process.stdout:
            line = line.rstrip()
            logger.debug(f"[hledger-web {self.port}] {line}")
            if self.settings.ready_marker in line and self._transition(
                ProcessState.READY, expected={ProcessState.STARTING}, generation=generation
            ):
                logger.info(
                    f"hledger-web successfully launched for {self.journal_file} at "
                    f"{self.settings.host}:{self.port} with PID {process.pid}"
                )

        if generation == self._generation and self.state is ProcessState.STARTING:
            logger.error(
                f"hledger-web for {self.journal_file} closed its output before becoming ready"
            )

    def _stop(self) -> None:
        """Kill the current process; caller holds the process lock."""
        process = self._process
        if process is None:
            return
        if process.poll() is None:
            logger.info(f"Killing hledger-web {self.journal_file}...")
            process.kill()
        logger.info("Waiting for hledger-web to close...")
        exit_code = process.wait()
        logger.info(f"hledger-web closed with exit code: {exit_code}")
        self._process = None

    def restart(self) -> None:
        """Kill and respawn the process."""
        with self._process_lock:
            if not self._transition(ProcessState.RESTARTING):
                raise LedgerEngineError(f"hledger-web for {self.journal_file} was terminated")
            self._stop()
            self._spawn()

    def terminate(self) -> None:
        """Stop the process for good."""
        with self._process_lock:
            self._transition(ProcessState.TERMINATED)
            self._stop()
        self._client.close()

    # Requests

    def _get(self, path: str, retry: bool = True) -> Any:
        """GET a JSON resource, restarting and retrying once on timeout."""
        self.wait_until_ready()
        try:
            response = self._client.get(f"/{path}")
            response.raise_for_status()
            return response.json()
        except (httpx.TimeoutException, httpx.ConnectError) as e:
            if not retry:
                raise LedgerEngineError(
                    f"hledger-web request /{path} on {self.port} failed after restart: {e}"
                ) from e
            logger.error(f"Restarting hledger-web for {self.journal_file} due to {e!r}")
            self.restart()
            return self._get(path, retry=False)
        except httpx.HTTPError as e:
            raise LedgerEngineError(f"hledger-web request /{path} on {self.port} failed: {e}") from e
        except ValueError as e:
            raise LedgerEngineError(f"Invalid JSON from hledger-web /{path}: {e}") from e

    def account_names(self) -> list[str]:
        return list(self._get("accountnames"))

    def commodities(self) -> list[str]:
        return [
            c for c in self._get("commodities") if c not in IGNORED_COMMODITIES and " " not in c
        ]

    def transactions(self) -> list[RecordedTransaction]:
        payload = self._get("transactions")
        try:
            return [RecordedTransaction.model_validate(t) for t in payload]
        except ValidationError as e:
            raise LedgerEngineError(f"Unexpected transaction from hledger-web: {e}") from e

    def append(self, transaction: RecordedTransaction) -> bool:
        """
        Append a transaction to the journal.

        Args:
            transaction: Transaction to write

        Returns:
            True if the engine accepted it
        """
        self.wait_until_ready()
        logger.info(
            f"Writing transaction ({transaction.tdescription}) to hledger file "
            f"{self.journal_file} on port {self.port}"
        )
        try:
            response = self._client.put(
                "/add",
                json=transaction.to_json(),
                timeout=self.settings.write_timeout_seconds,
            )
        except httpx.HTTPError as e:
            logger.warning(f"Writing to {self.journal_file} failed: {e!r}")
            return False

        if not response.is_success:
            logger.error(
                f"hledger-web rejected transaction ({transaction.tdescription}): "
                f"{response.status_code} {response.text}"
            )
            return False
        return True
