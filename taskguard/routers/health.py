from fastapi import APIRouter, Depends
import requests
from sqlalchemy import text
from sqlmodel import Session
from taskguard.config import SERVICES
from taskguard.dependencies import Services, get_services, get_session

router = APIRouter()

@router.get("/health")
def health(session: Session = Depends(get_session)):
    session.connection().execute(text("SELECT 1"))
    return {"ok": True}

@router.get("/health/services")
def health_services(services: Services = Depends(get_services)):
    out = {}
    for name, conf in SERVICES.items():
        url = conf["base_url"].rstrip("/") + conf.get("health_path", "/health")
        circuit = services.breaker.get_state(name).value
        try:
            r = requests.get(url, timeout=(2, 2))
            out[name] = {"ok": r.status_code == 200, "status_code": r.status_code, "circuit": circuit}
        except requests.RequestException as e:
            out[name] = {"ok": False, "error": str(e), "circuit": circuit}
    return out

@router.get("/health/queue")
def health_queue(services: Services = Depends(get_services)):
    return services.monitor.health_status()
