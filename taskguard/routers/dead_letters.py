from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from taskguard.dependencies import Services, get_services
from taskguard.models.enums import DeadLetterReason
from taskguard.schemas.jobs import DeadLetterOut, DismissRequest, ReplayRequest

router = APIRouter()

@router.get("/dead-letters")
def list_dead_letters(limit: int = Query(50, ge=1, le=500), offset: int = Query(0, ge=0),
                      reason: Optional[DeadLetterReason] = None,
                      services: Services = Depends(get_services)):
    entries = services.dead_letters.get_pending(limit, offset, reason)
    return {"items": [DeadLetterOut.from_entry(e) for e in entries], "limit": limit, "offset": offset}

@router.get("/dead-letters/stats")
def dead_letter_stats(services: Services = Depends(get_services)):
    return services.dead_letters.stats()

@router.get("/dead-letters/{entry_id}", response_model=DeadLetterOut)
def get_dead_letter(entry_id: int, services: Services = Depends(get_services)):
    entry = services.dead_letters.get(entry_id)
    if not entry:
        raise HTTPException(404, "Dead letter not found")
    return DeadLetterOut.from_entry(entry)

@router.post("/dead-letters/{entry_id}/replay")
def replay_dead_letter(entry_id: int, req: Optional[ReplayRequest] = None,
                       services: Services = Depends(get_services)):
    req = req or ReplayRequest()
    entry = services.dead_letters.get(entry_id)
    if not entry:
        raise HTTPException(404, "Dead letter not found")

    job_id = services.dead_letters.replay(entry_id, req.delay, req.priority)
    if job_id is None:
        raise HTTPException(409, "Dead letter is no longer pending")
    return {"success": True, "entry_id": entry_id, "job_id": job_id}

@router.post("/dead-letters/{entry_id}/dismiss")
def dismiss_dead_letter(entry_id: int, req: Optional[DismissRequest] = None,
                        services: Services = Depends(get_services)):
    req = req or DismissRequest()
    if not services.dead_letters.get(entry_id):
        raise HTTPException(404, "Dead letter not found")
    dismissed = services.dead_letters.dismiss(entry_id, req.reason)
    return {"success": dismissed, "entry_id": entry_id}
