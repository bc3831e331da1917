import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from taskguard.celery_app import celery_app
from taskguard.config import LANES
from taskguard.models.enums import Priority
from taskguard.schemas.envelopes import unwrap
from taskguard.services.error_taxonomy import InvalidPayloadError

logger = logging.getLogger(__name__)

DISPATCH_TASK = "taskguard_worker.tasks.dispatch_job"

class CeleryHostScheduler:
    """Deferred execution on Celery: every job is a dispatch_job task on its lane's queue."""

    def __init__(self, app=celery_app, task_name: str = DISPATCH_TASK):
        self.app = app
        self.task_name = task_name

    def submit(self, hook: str, payload: Dict[str, Any], not_before: float,
               priority: Priority, job_id: Optional[str] = None) -> str:
        job_id = job_id or str(uuid.uuid4())
        lane = LANES[Priority.clamp(priority).lane]
        self.app.send_task(
            self.task_name,
            args=[hook, payload],
            task_id=job_id,
            queue=lane["queue"],
            eta=datetime.fromtimestamp(not_before, tz=timezone.utc),
            # 0 is served first on the redis transport
            priority=(int(priority) - 1) * 2,
        )
        return job_id

    def _pending_requests(self) -> Iterable[Dict[str, Any]]:
        inspect = self.app.control.inspect()
        for entries in (inspect.scheduled() or {}).values():
            for entry in entries:
                yield entry.get("request", entry)
        for entries in (inspect.reserved() or {}).values():
            for entry in entries:
                yield entry

    def cancel(self, hook: str, args: Dict[str, Any]) -> int:
        """
        Revoke not-yet-started dispatch tasks for hook whose unwrapped args equal args.

        Only tasks already held by a worker (ETA-scheduled or reserved) are
        visible to inspect; anything still sitting on the broker is not.
        """
        revoked = 0
        for request in self._pending_requests():
            if request.get("name") != self.task_name:
                continue
            task_args = request.get("args") or []
            if len(task_args) < 2 or task_args[0] != hook:
                continue
            try:
                job_args, _ = unwrap(task_args[1])
            except InvalidPayloadError:
                continue
            if job_args != args:
                continue
            self.app.control.revoke(request["id"])
            revoked += 1

        logger.info("Cancelled scheduled jobs", extra={"hook": hook, "count": revoked})
        return revoked
