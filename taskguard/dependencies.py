from dataclasses import dataclass
from typing import Optional

from fastapi import Depends
from sqlmodel import Session, SQLModel, create_engine

from taskguard.config import DATABASE_URL
from taskguard.models.circuit_state import CircuitState  # noqa: F401
from taskguard.models.dead_letter import DeadLetterEntry  # noqa: F401
from taskguard.models.idempotency_claim import IdempotencyClaim  # noqa: F401
from taskguard.models.rate_window import RateWindow  # noqa: F401
from taskguard.models.saga_record import SagaRecord  # noqa: F401
from taskguard.repositories.circuit_repository import CircuitRepository
from taskguard.repositories.dead_letter_repository import DeadLetterRepository
from taskguard.repositories.idempotency_repository import IdempotencyRepository
from taskguard.repositories.rate_window_repository import RateWindowRepository
from taskguard.repositories.saga_repository import SagaRepository
from taskguard.services.circuit_breaker import CircuitBreaker
from taskguard.services.dead_letter_queue import DeadLetterQueue
from taskguard.services.event_service import EventService
from taskguard.services.host_scheduler import CeleryHostScheduler
from taskguard.services.http_service_client import HTTPServiceClient
from taskguard.services.idempotency_service import IdempotencyService
from taskguard.services.job_monitor import JobMonitor
from taskguard.services.priority_scheduler import PriorityScheduler
from taskguard.services.rate_limiter import RateLimiter
from taskguard.services.saga_orchestrator import SagaOrchestrator

engine = create_engine(DATABASE_URL, pool_pre_ping=True)

def get_session():
    with Session(engine) as session:
        yield session

def init_db(bind=None):
    SQLModel.metadata.create_all(bind or engine)

@dataclass
class Services:
    session: Session
    events: EventService
    idempotency: IdempotencyService
    limiter: RateLimiter
    breaker: CircuitBreaker
    scheduler: PriorityScheduler
    dead_letters: DeadLetterQueue
    sagas: SagaOrchestrator
    http_client: HTTPServiceClient
    monitor: JobMonitor

def build_services(session: Session, host=None, events: Optional[EventService] = None,
                   http_client: Optional[HTTPServiceClient] = None) -> Services:
    """Wire every component onto one session; used by the API and by the worker."""
    events = events or EventService()
    idempotency = IdempotencyService(IdempotencyRepository(session))
    limiter = RateLimiter(RateWindowRepository(session), events=events)
    breaker = CircuitBreaker(CircuitRepository(session), events=events)
    scheduler = PriorityScheduler(host or CeleryHostScheduler(), events=events,
                                  limiter=limiter, idempotency=idempotency)
    dead_letters = DeadLetterQueue(DeadLetterRepository(session), scheduler=scheduler, events=events)
    sagas = SagaOrchestrator(SagaRepository(session), breaker=breaker, events=events)
    return Services(
        session=session,
        events=events,
        idempotency=idempotency,
        limiter=limiter,
        breaker=breaker,
        scheduler=scheduler,
        dead_letters=dead_letters,
        sagas=sagas,
        http_client=http_client or HTTPServiceClient(),
        monitor=JobMonitor(dead_letters, breaker, sagas),
    )

def get_host():
    return CeleryHostScheduler()

def get_events():
    return EventService()

def get_services(session: Session = Depends(get_session), host=Depends(get_host),
                 events: EventService = Depends(get_events)) -> Services:
    return build_services(session, host=host, events=events)
