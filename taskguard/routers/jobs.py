from fastapi import APIRouter, Depends, HTTPException

from taskguard.dependencies import Services, get_services
from taskguard.jobs.registry import job_registry
from taskguard.models.enums import Priority
from taskguard.schemas.jobs import CancelJobRequest, JobScheduledResponse, RecurringJobRequest, ScheduleJobRequest
from taskguard.services.error_taxonomy import InvalidPayloadError

router = APIRouter()

def _known_hook(hook: str):
    if hook not in job_registry:
        raise HTTPException(400, f"Unknown job hook: {hook}")

@router.post("/jobs", status_code=201, response_model=JobScheduledResponse)
def schedule_job(req: ScheduleJobRequest, services: Services = Depends(get_services)):
    _known_hook(req.hook)
    try:
        if req.unique:
            job_id = services.scheduler.schedule_unique(req.hook, req.args, req.priority, req.delay)
        else:
            job_id = services.scheduler.schedule(req.hook, req.args, req.priority, req.delay)
    except InvalidPayloadError as e:
        raise HTTPException(422, str(e))

    return JobScheduledResponse(
        success=job_id is not None,
        job_id=job_id,
        hook=req.hook,
        priority=req.priority,
        lane=Priority(req.priority).lane,
        duplicate=job_id is None,
    )

@router.post("/jobs/recurring", status_code=201, response_model=JobScheduledResponse)
def schedule_recurring_job(req: RecurringJobRequest, services: Services = Depends(get_services)):
    _known_hook(req.hook)
    job_id = services.scheduler.schedule_recurring(req.hook, req.args, req.interval, req.priority)
    return JobScheduledResponse(
        success=True,
        job_id=job_id,
        hook=req.hook,
        priority=req.priority,
        lane=Priority(req.priority).lane,
    )

@router.post("/jobs/cancel")
def cancel_job(req: CancelJobRequest, services: Services = Depends(get_services)):
    cancelled = services.scheduler.cancel(req.hook, req.args)
    return {"success": True, "hook": req.hook, "cancelled": cancelled}
