import threading

import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, select

from taskguard.models.rate_window import RateWindow
from taskguard.repositories.rate_window_repository import RateWindowRepository
from taskguard.services.rate_limiter import RateLimiter, RateLimitExceededError


def _limiter(session, events=None, **kwargs):
    return RateLimiter(RateWindowRepository(session), events=events, **kwargs)


def test_admits_exactly_limit_requests_per_window(session):
    limiter = _limiter(session)
    results = [limiter.check_and_hit("+15550100", "test", limit=3, window=3600) for _ in range(5)]

    assert [r.allowed for r in results] == [True, True, True, False, False]
    assert [r.remaining for r in results] == [2, 1, 0, 0, 0]
    assert results[0].reset_at % 3600 == 0


def test_configured_limit_types_are_used(session):
    limiter = _limiter(session)
    results = [limiter.check_and_hit("1.2.3.4", "auth") for _ in range(6)]
    assert sum(r.allowed for r in results) == 5


def test_identifiers_are_stored_hashed(session):
    limiter = _limiter(session)
    limiter.check_and_hit("+15550100", "api")

    rows = session.exec(select(RateWindow)).all()
    assert len(rows) == 1
    assert rows[0].identifier_hash == RateLimiter.hash_identifier("+15550100")
    assert "+15550100" not in rows[0].identifier_hash


def test_check_does_not_count(session):
    limiter = _limiter(session)
    for _ in range(3):
        assert limiter.check("user-1", "test", limit=1, window=3600).allowed is True
    assert limiter.check_and_hit("user-1", "test", limit=1, window=3600).allowed is True
    assert limiter.check("user-1", "test", limit=1, window=3600).allowed is False


def test_block_refuses_until_unblocked(session, events, published):
    limiter = _limiter(session, events=events)
    limiter.block("spammer", duration=600, reason="abuse")

    result = limiter.check_and_hit("spammer", "api")
    assert result.allowed is False
    assert result.blocked is True
    assert limiter.is_blocked("spammer") is True
    assert published("rate_limit.blocked")[0]["identifier_hash"] == RateLimiter.hash_identifier("spammer")

    assert limiter.unblock("spammer") is True
    assert limiter.is_blocked("spammer") is False
    assert limiter.check_and_hit("spammer", "api").allowed is True


def test_reset_clears_windows(session):
    limiter = _limiter(session)
    limiter.check_and_hit("u", "test", limit=1, window=3600)
    assert limiter.check_and_hit("u", "test", limit=1, window=3600).allowed is False

    assert limiter.reset("u", "test") == 1
    assert limiter.check_and_hit("u", "test", limit=1, window=3600).allowed is True


def test_hit_counts_unconditionally(session):
    limiter = _limiter(session)
    limiter.hit("login", "test", window=3600)
    limiter.hit("login", "test", window=3600)
    assert limiter.check("login", "test", limit=2, window=3600).allowed is False


def test_attempt_runs_callback_or_raises(session):
    limiter = _limiter(session)
    assert limiter.attempt("x", "test", lambda: "sent", limit=1, window=3600) == "sent"
    with pytest.raises(RateLimitExceededError):
        limiter.attempt("x", "test", lambda: "sent", limit=1, window=3600)


def test_store_outage_degrades_to_allow(session, mocker):
    limiter = _limiter(session)
    mocker.patch.object(
        limiter.repo, "active_block",
        side_effect=OperationalError("SELECT", {}, Exception("database is locked")),
    )
    assert limiter.check_and_hit("u", "api").allowed is True


def test_store_outage_refuses_when_fail_closed(session, mocker):
    limiter = _limiter(session, fail_open=False)
    mocker.patch.object(
        limiter.repo, "active_block",
        side_effect=OperationalError("SELECT", {}, Exception("database is locked")),
    )
    assert limiter.check_and_hit("u", "api").allowed is False


def test_headers(session):
    limiter = _limiter(session)
    ok = limiter.check_and_hit("h", "test", limit=1, window=3600)
    refused = limiter.check_and_hit("h", "test", limit=1, window=3600)

    assert limiter.headers(ok)["X-RateLimit-Remaining"] == "0"
    assert "Retry-After" not in limiter.headers(ok)
    assert "Retry-After" in limiter.headers(refused)


def test_cleanup_drops_expired_windows(session):
    limiter = _limiter(session)
    limiter.check_and_hit("old", "test", limit=5, window=3600)
    row = session.exec(select(RateWindow)).one()
    row.expires_at = 1.0
    session.add(row)
    session.commit()

    assert limiter.cleanup() == 1


def test_configure_overrides_limit(session):
    limiter = _limiter(session)
    limiter.configure("export", limit=1, window=3600)
    assert limiter.check_and_hit("u", "export").allowed is True
    assert limiter.check_and_hit("u", "export").allowed is False
    with pytest.raises(ValueError):
        limiter.configure("export", limit=0, window=60)


def test_concurrent_admission_never_exceeds_limit(file_engine):
    allowed = []
    lock = threading.Lock()
    start = threading.Barrier(8)

    def worker():
        with Session(file_engine) as session:
            limiter = _limiter(session)
            start.wait()
            for _ in range(5):
                result = limiter.check_and_hit("hot-key", "test", limit=10, window=3600)
                with lock:
                    allowed.append(result.allowed)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(allowed) == 40
    assert allowed.count(True) == 10
