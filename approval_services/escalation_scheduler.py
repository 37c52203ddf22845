"""
EscalationScheduler -- in-process timer for the escalation sweep.

Contract:
    Runs ``ApprovalWorkflowService.process_escalations()`` on a fixed
    interval, one session and one transaction per run.

Invariants enforced:
    - All timestamps come from the injected Clock.
    - A failed run is rolled back, logged, and retried on the next tick.
    - Graceful shutdown: ``stop()`` signals the loop and waits for the
      current run to finish.
"""

from __future__ import annotations

import threading
from typing import Callable

from sqlalchemy.orm import Session

from approval_config.schema import ApprovalConfigurationSet
from approval_kernel.domain.approval import EscalationSweepResult
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.logging_config import get_logger
from approval_services.orchestrator import ApprovalOrchestrator

logger = get_logger("services.escalation_scheduler")


class EscalationScheduler:
    """Background escalation sweep.

    Non-goals:
        - NOT a distributed scheduler (no leader election).  Concurrent
          sweeps in several processes are safe because each escalation
          locks its row, but they duplicate work.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        config: ApprovalConfigurationSet | None = None,
        clock: Clock | None = None,
        interval_seconds: int | None = None,
    ):
        self._session_factory = session_factory
        self._config = config
        self._clock = clock or SystemClock()
        if interval_seconds is None:
            interval_seconds = config.settings.escalation_interval_seconds if config else 3600
        self._interval = interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def tick(self) -> EscalationSweepResult | None:
        """Run one sweep (public for testing).  None when the run failed."""
        session = self._session_factory()
        try:
            services = ApprovalOrchestrator(session, self._config, self._clock)
            result = services.workflow.process_escalations()
            session.commit()
            return result
        except Exception:
            session.rollback()
            logger.exception("escalation_sweep_failed")
            return None
        finally:
            session.close()

    def start(self) -> None:
        """Start the sweep loop in a daemon thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="approval-escalation-sweep",
            daemon=True,
        )
        self._thread.start()
        logger.info("escalation_scheduler_started", extra={"interval_seconds": self._interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the current run to finish."""
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("escalation_scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.tick()
            self._stop_event.wait(timeout=self._interval)
