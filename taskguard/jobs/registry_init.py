"""
Registers the built-in job executors with the global job registry.
"""

import logging

from taskguard.jobs.outbound import OutboundCallExecutor
from taskguard.jobs.registry import job_registry
from taskguard.jobs.saga_job import SagaJobExecutor

logger = logging.getLogger(__name__)

def register_job_handlers() -> None:
    job_registry.register(OutboundCallExecutor)
    job_registry.register(SagaJobExecutor)

    logger.info("Job handlers registered", extra={"registered_handlers": job_registry.list()})
