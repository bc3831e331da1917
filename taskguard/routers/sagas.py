from fastapi import APIRouter, Depends, HTTPException, Query

from taskguard.dependencies import Services, get_services
from taskguard.schemas.jobs import SagaOut

router = APIRouter()

def _out(record) -> SagaOut:
    return SagaOut(
        saga_id=record.saga_id,
        saga_type=record.saga_type,
        state=record.state.value,
        context=record.context or {},
        log=record.log or [],
        error=record.error,
        failed_step=record.failed_step,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )

@router.get("/sagas/stalled")
def stalled_sagas(limit: int = Query(50, ge=1, le=500), services: Services = Depends(get_services)):
    return {"items": [_out(r) for r in services.sagas.get_stalled(limit)]}

@router.get("/sagas/{saga_id}", response_model=SagaOut)
def get_saga(saga_id: str, services: Services = Depends(get_services)):
    record = services.sagas.get(saga_id)
    if not record:
        raise HTTPException(404, "Saga not found")
    return _out(record)
