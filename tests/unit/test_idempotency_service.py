import threading
import time

from sqlmodel import Session

from taskguard.models.idempotency_claim import IdempotencyClaim
from taskguard.repositories.idempotency_repository import IdempotencyRepository
from taskguard.services.idempotency_service import IdempotencyService


def _service(session):
    return IdempotencyService(IdempotencyRepository(session))


def test_first_claim_wins_and_duplicates_are_rejected(session):
    svc = _service(session)
    assert svc.claim("wamid.HBgM1", "webhook") is True
    assert svc.claim("wamid.HBgM1", "webhook") is False
    assert svc.is_claimed("wamid.HBgM1", "webhook") is True


def test_same_id_in_different_scopes_is_independent(session):
    svc = _service(session)
    assert svc.claim("order-9", "order") is True
    assert svc.claim("order-9", "notification") is True


def test_default_ttl_is_24_hours(session):
    svc = _service(session)
    before = time.time()
    svc.claim("evt-1", "webhook")
    claim = session.get(IdempotencyClaim, ("evt-1", "webhook"))
    assert 24 * 3600 - 5 <= claim.expires_at - before <= 24 * 3600 + 5


def test_expired_claim_can_be_claimed_again(session):
    svc = _service(session)
    svc.claim("evt-2", "webhook")
    claim = session.get(IdempotencyClaim, ("evt-2", "webhook"))
    claim.expires_at = time.time() - 1
    session.add(claim)
    session.commit()

    assert svc.is_claimed("evt-2", "webhook") is False
    assert svc.claim("evt-2", "webhook") is True


def test_release_and_release_scope(session):
    svc = _service(session)
    svc.claim("a", "sync")
    svc.claim("b", "sync")
    svc.claim("c", "broadcast")

    assert svc.release("a", "sync") is True
    assert svc.release("a", "sync") is False
    assert svc.claim("a", "sync") is True

    assert svc.release_scope("sync") == 2
    assert svc.stats() == {"broadcast": 1}


def test_extend_expiry_only_for_live_claims(session):
    svc = _service(session)
    svc.claim("k", "order", ttl_hours=1)
    old = session.get(IdempotencyClaim, ("k", "order")).expires_at

    assert svc.extend_expiry("k", "order", 2) is True
    assert svc.extend_expiry("missing", "order", 2) is False
    session.expire_all()
    assert session.get(IdempotencyClaim, ("k", "order")).expires_at == old + 7200


def test_cleanup_removes_only_expired_claims(session):
    svc = _service(session)
    svc.claim("live", "webhook")
    svc.claim("dead", "webhook")
    claim = session.get(IdempotencyClaim, ("dead", "webhook"))
    claim.expires_at = time.time() - 10
    session.add(claim)
    session.commit()

    assert svc.cleanup() == 1
    assert svc.is_claimed("live", "webhook") is True


def test_generate_key_is_stable_sha256():
    k1 = IdempotencyService.generate_key("order", 12, "paid")
    k2 = IdempotencyService.generate_key("order", "12", "paid")
    assert k1 == k2
    assert len(k1) == 64
    assert k1 != IdempotencyService.generate_key("order", 12, "refunded")


def test_claim_with_parts(session):
    svc = _service(session)
    assert svc.claim_with_parts("notification", "order-1", "shipped") is True
    assert svc.claim_with_parts("notification", "order-1", "shipped") is False


def test_concurrent_claims_have_exactly_one_winner(file_engine):
    results = []
    lock = threading.Lock()
    start = threading.Barrier(8)

    def worker():
        with Session(file_engine) as session:
            start.wait()
            won = _service(session).claim("race-1", "webhook")
        with lock:
            results.append(won)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count(True) == 1
    assert results.count(False) == 7
