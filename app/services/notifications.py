# File: app/services/notifications.py
"""NotificationDispatcher: non-throwing email/SMS delivery with a per-call timeout.

The sweeps commit their state first and only then dispatch, so a slow recipient never
holds an issue's row lock. Every method returns a DispatchResult; failures (including
timeouts) are reported, never raised.
"""
import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from dataclasses import dataclass
from typing import Callable, Optional

from app.core.config import settings
from app.services import notify_email, notify_sms

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DispatchResult:
    success: bool
    detail: Optional[str] = None


@dataclass(frozen=True)
class IssueNotice:
    """Detached copy of what a notification needs, taken while the row was locked."""
    issue_id: int
    category: str
    place: Optional[str]
    hours_elapsed: Optional[float]
    supporter_count: int


class NotificationDispatcher:
    def __init__(self, timeout: Optional[float] = None, max_workers: int = 4):
        self.timeout = timeout if timeout is not None else settings.notification_timeout_seconds
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="notify")

    def _call(self, label: str, fn: Callable[..., tuple[bool, str]], *args, **kwargs) -> DispatchResult:
        try:
            future = self._pool.submit(fn, *args, **kwargs)
            success, detail = future.result(timeout=self.timeout)
            return DispatchResult(bool(success), detail)
        except FuturesTimeout:
            logger.warning("%s timed out after %.0fs", label, self.timeout)
            return DispatchResult(False, f"timeout after {self.timeout:.0f}s")
        except Exception as e:
            logger.error(f"{label} failed: {e}", exc_info=True)
            return DispatchResult(False, f"error: {e}")

    def send_email(self, issue: IssueNotice, tier: int, recipient: str, recipient_name: Optional[str] = None) -> DispatchResult:
        return self._call(
            f"escalation email L{tier} for issue #{issue.issue_id}",
            notify_email.send_escalation_email,
            recipient,
            tier,
            issue.issue_id,
            issue.category,
            issue.place,
            issue.hours_elapsed,
            issue.supporter_count,
            recipient_name,
        )

    def send_sms(self, phone: str, text: str) -> DispatchResult:
        return self._call(f"sms to {phone}", notify_sms.send_sms, phone, text)

    def send_digest(self, recipient: str, rows: list[dict], recipient_name: Optional[str] = None) -> DispatchResult:
        return self._call("critical backlog digest", notify_email.send_backlog_digest, recipient, rows, recipient_name)

    def shutdown(self):
        self._pool.shutdown(wait=False, cancel_futures=True)
