import logging
import time
from typing import Any, Dict, List, Optional

from taskguard.config import DEAD_LETTER_RETENTION_DAYS
from taskguard.models.dead_letter import DeadLetterEntry
from taskguard.models.enums import DeadLetterReason, DeadLetterStatus, JobEvent, Priority
from taskguard.repositories.dead_letter_repository import DeadLetterRepository

logger = logging.getLogger(__name__)

class DeadLetterQueue:
    """
    Parking lot for jobs that will not be retried.

    Entries start PENDING. ``replay`` and ``dismiss`` each move an entry out
    of PENDING with a conditional UPDATE, so an entry is replayed at most once
    and a replayed entry can no longer be dismissed.
    """

    def __init__(self, repo: DeadLetterRepository, scheduler=None, events=None):
        self.repo = repo
        self.scheduler = scheduler
        self.events = events

    def add(self, hook: str, args: Dict[str, Any], reason: DeadLetterReason, message: str,
            attempts: int = 1, priority: int = Priority.NORMAL,
            metadata: Optional[Dict[str, Any]] = None) -> int:
        entry = self.repo.create(
            hook=hook,
            args=args,
            reason=DeadLetterReason(reason),
            error_message=message,
            attempts=attempts,
            priority=int(Priority.clamp(priority)),
            meta=metadata,
        )
        logger.error(
            "Job dead-lettered",
            extra={"hook": hook, "reason": entry.reason.value, "attempts": attempts, "entry_id": entry.id},
        )
        return entry.id

    def get(self, entry_id: int) -> Optional[DeadLetterEntry]:
        return self.repo.get(entry_id)

    def get_pending(self, limit: int = 50, offset: int = 0,
                    reason: Optional[DeadLetterReason] = None) -> List[DeadLetterEntry]:
        return self.repo.list_pending(limit, offset, reason)

    def replay(self, entry_id: int, delay: float = 0, priority: Optional[int] = None) -> Optional[str]:
        """Re-schedule a PENDING entry as a fresh first attempt. Returns the new job id."""
        if self.scheduler is None:
            raise RuntimeError("DeadLetterQueue.replay requires a PriorityScheduler")

        entry = self.repo.get(entry_id)
        if not entry or entry.status != DeadLetterStatus.PENDING:
            return None
        hook, args = entry.hook, dict(entry.args or {})
        job_priority = entry.priority if priority is None else priority

        if not self.repo.mark_replayed(entry_id):
            # another operator got there first
            return None

        try:
            job_id = self.scheduler.schedule(hook, args, job_priority, delay, attempt=1, replayed_from=entry_id)
        except Exception:
            self.repo.revert_replay(entry_id)
            logger.exception("Dead letter replay failed", extra={"entry_id": entry_id})
            raise

        self.repo.merge_meta(entry_id, {"replay_job_id": job_id})
        if self.events:
            self.events.emit(JobEvent.DEAD_LETTER_REPLAYED, entry_id=entry_id, hook=hook, job_id=job_id)
        return job_id

    def dismiss(self, entry_id: int, reason: str = "") -> bool:
        if not self.repo.mark_dismissed(entry_id):
            return False
        if reason:
            self.repo.merge_meta(entry_id, {"dismiss_reason": reason})
        if self.events:
            self.events.emit(JobEvent.DEAD_LETTER_DISMISSED, entry_id=entry_id, reason=reason)
        return True

    def cleanup(self, max_age_days: int = DEAD_LETTER_RETENTION_DAYS) -> int:
        removed = self.repo.delete_resolved_before(time.time() - max_age_days * 86400)
        if removed:
            logger.info("Old dead letters removed", extra={"count": removed, "max_age_days": max_age_days})
        return removed

    def stats(self) -> Dict[str, Any]:
        by_status = self.repo.count_by_status()
        return {
            "pending": by_status.get(DeadLetterStatus.PENDING.value, 0),
            "replayed": by_status.get(DeadLetterStatus.REPLAYED.value, 0),
            "dismissed": by_status.get(DeadLetterStatus.DISMISSED.value, 0),
            "pending_by_reason": self.repo.count_pending_by_reason(),
            "pending_by_hook": self.repo.count_pending_by_hook(),
        }

    def count_since(self, since: float) -> int:
        return self.repo.count_created_since(since)
