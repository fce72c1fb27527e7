"""Ingestion drivers: one-shot runs and the continuous polling service.

``run_once`` indexes to the current head with bounded retries.
``IngestionService`` keeps the index up to date in the background: a tick
fires immediately on start and then every poll interval, and each tick
starts a scan only when no scan is already in flight.
"""

import asyncio
import contextlib
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

from erc20_indexer.chain.reader import RpcError
from erc20_indexer.ingestion.scanner import ScanResult, TransferScanner
from erc20_indexer.storage.errors import StoreError

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_POLL_INTERVAL_SECONDS = 15.0
DEFAULT_SHUTDOWN_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_DELAY_SECONDS = 1.0


class IngestionState(str, Enum):
    """State of the ingestion service."""

    STOPPED = "stopped"
    STARTING = "starting"
    IDLE = "idle"
    SCANNING = "scanning"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class IngestionStats:
    """Statistics for the ingestion service."""

    scans_started: int = 0
    scans_completed: int = 0
    scans_failed: int = 0
    ticks_skipped: int = 0
    records_written: int = 0
    last_indexed_block: int | None = None
    last_scan_at: datetime | None = None
    last_scan_duration_seconds: float = 0.0
    last_error: str | None = None


StateCallback = Callable[[IngestionState], None]


async def run_once(
    scanner: TransferScanner,
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
) -> ScanResult:
    """Index up to the current head, retrying transient failures.

    Each attempt resumes from the checkpoint, so a retry never re-scans a
    chunk that was already committed.

    Args:
        scanner: Configured scanner.
        max_attempts: Total attempts before the last error is raised.
        retry_delay_seconds: Delay before the first retry; doubles each time.

    Raises:
        RpcError: If the endpoint still fails after ``max_attempts``.
        StoreError: Immediately for fatal store errors, or after
            ``max_attempts`` for transient ones.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    delay = retry_delay_seconds
    attempt = 0
    while True:
        attempt += 1
        try:
            return await scanner.scan()
        except StoreError as e:
            if not e.transient or attempt >= max_attempts:
                raise
            logger.warning("Scan attempt %d/%d failed: %s", attempt, max_attempts, e)
        except RpcError as e:
            if attempt >= max_attempts:
                raise
            logger.warning("Scan attempt %d/%d failed: %s", attempt, max_attempts, e)
        await asyncio.sleep(delay)
        delay *= 2


class IngestionService:
    """Background service that keeps the transfer index at the chain head.

    Example:
        ```python
        service = IngestionService(scanner, poll_interval_seconds=15)
        await service.start()
        ...
        await service.stop()
        ```
    """

    def __init__(
        self,
        scanner: TransferScanner,
        *,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        shutdown_timeout_seconds: float = DEFAULT_SHUTDOWN_TIMEOUT_SECONDS,
        on_state_change: StateCallback | None = None,
    ) -> None:
        """Initialize the ingestion service.

        Args:
            scanner: Scanner run on every tick.
            poll_interval_seconds: Interval between ticks.
            shutdown_timeout_seconds: How long ``stop()`` waits for the
                in-flight chunk before cancelling the scan.
            on_state_change: Callback for state changes.
        """
        if poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be positive")

        self._scanner = scanner
        self._poll_interval = poll_interval_seconds
        self._shutdown_timeout = shutdown_timeout_seconds
        self._on_state_change = on_state_change

        self._state = IngestionState.STOPPED
        self._stats = IngestionStats()
        self._tick_task: asyncio.Task[None] | None = None
        self._scan_task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()

    @property
    def state(self) -> IngestionState:
        """Current service state."""
        return self._state

    @property
    def stats(self) -> IngestionStats:
        """Current service statistics."""
        return self._stats

    @property
    def is_scanning(self) -> bool:
        return self._scan_task is not None and not self._scan_task.done()

    def _set_state(self, new_state: IngestionState) -> None:
        """Update state and notify callback."""
        old_state = self._state
        self._state = new_state
        if self._on_state_change and old_state != new_state:
            try:
                self._on_state_change(new_state)
            except Exception as e:
                logger.warning("State change callback failed: %s", e)

    async def start(self) -> None:
        """Start the tick loop. The first tick fires immediately."""
        if self._state != IngestionState.STOPPED:
            logger.warning("Cannot start ingestion: already in state %s", self._state.value)
            return

        self._set_state(IngestionState.STARTING)
        self._stop_event.clear()
        self._tick_task = asyncio.create_task(self._tick_loop())
        self._set_state(IngestionState.IDLE)
        logger.info(
            "Ingestion service started (contract=%s, interval=%.1fs)",
            self._scanner.contract_address,
            self._poll_interval,
        )

    async def stop(self) -> None:
        """Stop ticking and let the in-flight scan finish its current chunk.

        If the scan does not finish within the shutdown timeout it is
        cancelled; the interrupted chunk's checkpoint is never written.
        """
        if self._state in (IngestionState.STOPPED, IngestionState.STOPPING):
            return

        self._set_state(IngestionState.STOPPING)
        self._stop_event.set()

        if self._tick_task:
            self._tick_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._tick_task
            self._tick_task = None

        if self._scan_task and not self._scan_task.done():
            try:
                await asyncio.wait_for(asyncio.shield(self._scan_task), timeout=self._shutdown_timeout)
            except TimeoutError:
                logger.warning(
                    "Scan did not finish within %.1fs; cancelling",
                    self._shutdown_timeout,
                )
                self._scan_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await self._scan_task
        self._scan_task = None

        self._set_state(IngestionState.STOPPED)
        logger.info("Ingestion service stopped")

    async def run(self) -> None:
        """Run until cancelled or stopped."""
        await self.start()
        try:
            await self._stop_event.wait()
        finally:
            await self.stop()

    def trigger(self) -> bool:
        """Start a scan unless one is already in flight.

        Returns:
            True if a scan was started, False if the tick was skipped.
        """
        if self._stop_event.is_set():
            return False
        if self.is_scanning:
            self._stats.ticks_skipped += 1
            logger.debug("Scan still in flight; skipping tick")
            return False
        self._scan_task = asyncio.create_task(self._scan())
        return True

    async def _tick_loop(self) -> None:
        """Fire a tick now and then once per poll interval."""
        while not self._stop_event.is_set():
            self.trigger()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._poll_interval)
                break
            except TimeoutError:
                pass

    async def _scan(self) -> None:
        self._set_state(IngestionState.SCANNING)
        self._stats.scans_started += 1
        started = datetime.now(UTC)
        try:
            result = await self._scanner.scan(should_stop=self._stop_event.is_set)
        except (RpcError, StoreError) as e:
            self._record_failure(e)
            logger.warning("Scan failed, will retry next tick: %s", e)
            return
        except Exception as e:
            self._record_failure(e)
            logger.exception("Unexpected scan failure")
            return

        finished = datetime.now(UTC)
        self._stats.scans_completed += 1
        self._stats.records_written += result.records_written
        if result.last_indexed_block is not None:
            self._stats.last_indexed_block = result.last_indexed_block
        self._stats.last_scan_at = finished
        self._stats.last_scan_duration_seconds = (finished - started).total_seconds()
        self._stats.last_error = None
        if self._state == IngestionState.SCANNING:
            self._set_state(IngestionState.IDLE)

    def _record_failure(self, error: Exception) -> None:
        self._stats.scans_failed += 1
        self._stats.last_error = str(error)
        self._stats.last_scan_at = datetime.now(UTC)
        if self._state == IngestionState.SCANNING:
            self._set_state(IngestionState.ERROR)

    async def __aenter__(self) -> "IngestionService":
        await self.start()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.stop()
