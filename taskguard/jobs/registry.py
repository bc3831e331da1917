import logging
from typing import Dict, List, Type

from taskguard.services.job_executor import JobExecutor

logger = logging.getLogger(__name__)

class JobRegistry:
    """Maps hook names to JobExecutor classes so a single worker task can dispatch any job."""

    def __init__(self):
        self._executors: Dict[str, Type[JobExecutor]] = {}

    def register(self, executor_cls: Type[JobExecutor]) -> Type[JobExecutor]:
        hook = executor_cls.hook_name or executor_cls.__name__
        existing = self._executors.get(hook)
        if existing is not None and existing is not executor_cls:
            raise ValueError(f"Hook '{hook}' is already registered to {existing.__name__}")
        self._executors[hook] = executor_cls
        return executor_cls

    def get(self, hook: str) -> Type[JobExecutor]:
        if hook not in self._executors:
            raise KeyError(f"No job executor registered for hook: {hook}")
        return self._executors[hook]

    def list(self) -> List[str]:
        return sorted(self._executors.keys())

    def __contains__(self, hook: str) -> bool:
        return hook in self._executors

    def build(self, hook: str, services) -> JobExecutor:
        return self.get(hook).from_services(services)

job_registry = JobRegistry()
