from fastapi import APIRouter, Depends

from taskguard.dependencies import Services, get_services

router = APIRouter()

@router.get("/circuits")
def list_circuits(services: Services = Depends(get_services)):
    return {"items": services.breaker.all_metrics()}

@router.get("/circuits/{name}")
def get_circuit(name: str, services: Services = Depends(get_services)):
    return services.breaker.metrics(name)

@router.post("/circuits/{name}/open")
def open_circuit(name: str, services: Services = Depends(get_services)):
    services.breaker.open(name)
    return services.breaker.metrics(name)

@router.post("/circuits/{name}/close")
def close_circuit(name: str, services: Services = Depends(get_services)):
    services.breaker.close(name)
    return services.breaker.metrics(name)
