from fastapi import APIRouter, Depends

from taskguard.dependencies import Services, get_services
from taskguard.schemas.jobs import BlockRequest, UnblockRequest

router = APIRouter()

@router.post("/rate-limits/block")
def block_identifier(req: BlockRequest, services: Services = Depends(get_services)):
    expires_at = services.limiter.block(req.identifier, req.duration, req.reason)
    return {"success": True, "blocked_until": expires_at}

@router.post("/rate-limits/unblock")
def unblock_identifier(req: UnblockRequest, services: Services = Depends(get_services)):
    return {"success": services.limiter.unblock(req.identifier)}
