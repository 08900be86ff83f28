"""Background scheduler that polls the vendor mailbox on a fixed interval."""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from config.settings import settings
from services.ingestion_orchestrator import IngestionOrchestrator, PollInProgressError
from services.mailbox_client import MailboxConfigurationError, MailboxTimeoutError
from utils.retry import is_network_error, retry_with_backoff

logger = logging.getLogger(__name__)


class EmailPollingScheduler:
    """Run :meth:`IngestionOrchestrator.poll_once` after a short delay, then every interval.

    Scheduled runs retry network failures with exponential backoff; any other
    error ends the run and waits for the next tick.  ``poll_now`` wakes the
    loop for an immediate scheduled run.
    """

    def __init__(
        self,
        orchestrator: IngestionOrchestrator,
        *,
        interval_seconds: Optional[float] = None,
        initial_delay_seconds: Optional[float] = None,
        retry_attempts: Optional[int] = None,
        retry_initial_delay: Optional[float] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.interval = (
            settings.email_poll_interval_seconds if interval_seconds is None else interval_seconds
        )
        if self.interval <= 0:
            self.interval = 300.0
        self.initial_delay = (
            settings.email_poll_initial_delay_seconds
            if initial_delay_seconds is None
            else max(0.0, initial_delay_seconds)
        )
        self.retry_attempts = retry_attempts or settings.email_poll_retry_attempts
        self.retry_initial_delay = (
            settings.email_poll_retry_initial_delay_seconds
            if retry_initial_delay is None
            else retry_initial_delay
        )
        self._sleep = sleep
        self._stop_event = threading.Event()
        self._wake_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._state_lock = threading.Lock()
        self.last_run_at: Optional[datetime] = None
        self.last_result: Optional[Dict[str, object]] = None

    @property
    def running(self) -> bool:
        return bool(
            self._thread and self._thread.is_alive() and not self._stop_event.is_set()
        )

    def start(self) -> bool:
        """Start the polling loop; returns ``False`` when it cannot or need not start.

        A loop that was stopped while still inside a poll keeps its thread
        until the poll returns; starting again is refused until it has exited.
        """

        with self._state_lock:
            if self._thread is not None and self._thread.is_alive():
                if self._stop_event.is_set():
                    logger.warning(
                        "Email monitoring not started: previous loop is still finishing a poll"
                    )
                return False
            if not self.orchestrator.mailbox.configured:
                logger.warning("Email monitoring not started: IMAP credentials are not configured")
                return False
            stop_event = threading.Event()
            self._stop_event = stop_event
            self._wake_event.clear()
            self._thread = threading.Thread(
                target=self._run_loop,
                args=(stop_event,),
                name="EmailPollingScheduler",
                daemon=True,
            )
            self._thread.start()
        logger.info(
            "Email monitoring started (first poll in %ss, interval=%ss)",
            self.initial_delay,
            self.interval,
        )
        return True

    def stop(self, timeout: float = 5.0) -> None:
        with self._state_lock:
            self._stop_event.set()
            self._wake_event.set()
            thread = self._thread
            if thread and thread.is_alive():
                thread.join(timeout=timeout)
            if thread and thread.is_alive():
                logger.warning(
                    "Email monitoring stopping: loop will exit when the current poll returns"
                )
            else:
                self._thread = None
        logger.info("Email monitoring stopped")

    def poll_now(self) -> None:
        """Wake the loop so the next scheduled run happens immediately."""

        self._wake_event.set()

    def status(self) -> Dict[str, object]:
        return {
            "running": self.running,
            "polling": self.orchestrator.polling,
            "interval_seconds": self.interval,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_result": self.last_result,
        }

    def _backoff_sleep(self, seconds: float) -> None:
        if self._sleep is not None:
            self._sleep(seconds)
        elif self._stop_event.wait(timeout=seconds):
            raise InterruptedError("scheduler stopped during retry backoff")

    def _poll_attempt(self) -> int:
        try:
            return self.orchestrator.poll_once()
        except MailboxTimeoutError:
            # The aborted worker keeps the in-flight guard until it exits.
            if not self.orchestrator.wait_until_idle(timeout=self.orchestrator.poll_timeout):
                logger.warning("Worker of the timed-out poll is still running")
            raise

    def run_scheduled_poll(self) -> Dict[str, object]:
        """One scheduled run with network retries; never raises."""

        self.last_run_at = datetime.now(timezone.utc)
        attempted = 0

        def attempt() -> int:
            nonlocal attempted
            attempted += 1
            return self._poll_attempt()

        try:
            count = retry_with_backoff(
                attempt,
                attempts=self.retry_attempts,
                initial_delay=self.retry_initial_delay,
                is_retryable=is_network_error,
                sleep=self._backoff_sleep,
            )
        except PollInProgressError:
            if attempted > 1:
                logger.warning(
                    "Retry %d abandoned: a previous poll is still in progress", attempted
                )
            else:
                logger.info("Skipping scheduled poll: another poll is in progress")
            result: Dict[str, object] = {"success": False, "error": "poll in progress"}
        except InterruptedError:
            result = {"success": False, "error": "stopped"}
        except MailboxConfigurationError as exc:
            logger.error("Scheduled poll skipped: %s", exc)
            result = {"success": False, "error": str(exc)}
        except Exception as exc:
            if is_network_error(exc):
                logger.error(
                    "Scheduled poll failed after %d attempts: %s", self.retry_attempts, exc
                )
            else:
                logger.error("Scheduled poll failed: %s", exc)
            result = {"success": False, "error": str(exc)}
        else:
            result = {"success": True, "count": count}
        self.last_result = result
        return result

    def _wait_for_next_cycle(self, seconds: float, stop_event: threading.Event) -> None:
        if seconds <= 0:
            seconds = 0
        deadline = time.monotonic() + seconds
        while not stop_event.is_set():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            awakened = self._wake_event.wait(timeout=remaining)
            if awakened:
                self._wake_event.clear()
                break

    def _run_loop(self, stop_event: threading.Event) -> None:
        self._wait_for_next_cycle(self.initial_delay, stop_event)
        while not stop_event.is_set():
            self.run_scheduled_poll()
            self._wait_for_next_cycle(self.interval, stop_event)
        logger.debug("EmailPollingScheduler loop terminated")


__all__ = ["EmailPollingScheduler"]
