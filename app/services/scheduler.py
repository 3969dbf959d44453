# File: app/services/scheduler.py
"""Periodic background sweeps.

Each sweep is its own daemon thread with its own stop event; ticks open a fresh session,
run one bounded sweep and close it. Sweeps share no timer state, so they can run
concurrently with each other and with request traffic.
"""
import logging
import threading
from typing import Callable, Optional

from sqlalchemy.orm import Session, sessionmaker

from app.core.config import settings
from app.services.auto_promotion import run_auto_promotion_sweep
from app.services.escalation import run_escalation_sweep
from app.services.events import EventBroker
from app.services.notifications import NotificationDispatcher
from app.services.reporting import send_backlog_digest

logger = logging.getLogger(__name__)


class PeriodicSweep:
    def __init__(
        self,
        name: str,
        interval_seconds: float,
        session_factory: sessionmaker,
        job: Callable[[Session], object],
        run_at_start: bool = True,
    ):
        self.name = name
        self.interval_seconds = interval_seconds
        self._session_factory = session_factory
        self._job = job
        self._run_at_start = run_at_start
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def tick(self):
        """Run the job once. Errors are logged; the schedule keeps going."""
        db = self._session_factory()
        try:
            self._job(db)
        except Exception as e:
            logger.error(f"Error in {self.name} sweep: {e}", exc_info=True)
        finally:
            db.close()

    def _loop(self):
        if self._run_at_start and not self._stop.is_set():
            self.tick()
        while not self._stop.wait(self.interval_seconds):
            self.tick()

    def start(self):
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name=f"sweep-{self.name}", daemon=True)
        self._thread.start()
        logger.info("%s sweep started, every %.0f minutes", self.name, self.interval_seconds / 60)

    def stop(self, timeout: Optional[float] = 5.0):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None


class SweepScheduler:
    """Owns the escalation, auto-promotion and (optional) digest sweeps."""

    def __init__(self, session_factory: sessionmaker, dispatcher: NotificationDispatcher, broker: Optional[EventBroker] = None):
        self.dispatcher = dispatcher
        self.broker = broker
        self.sweeps = [
            PeriodicSweep(
                "escalation",
                settings.escalation_interval_minutes * 60,
                session_factory,
                lambda db: run_escalation_sweep(db, dispatcher, broker=broker),
            ),
            PeriodicSweep(
                "auto-promotion",
                settings.auto_promotion_interval_minutes * 60,
                session_factory,
                lambda db: run_auto_promotion_sweep(db, broker=broker),
            ),
        ]
        if settings.digest_interval_minutes > 0:
            self.sweeps.append(PeriodicSweep(
                "backlog-digest",
                settings.digest_interval_minutes * 60,
                session_factory,
                lambda db: send_backlog_digest(db, dispatcher),
                run_at_start=False,
            ))

    def start(self):
        for sweep in self.sweeps:
            sweep.start()

    def stop(self):
        for sweep in self.sweeps:
            sweep.stop()
