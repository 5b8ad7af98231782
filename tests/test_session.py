"""
Tests for password hashing, the session manager and the session validator.
"""

from __future__ import annotations

import threading

import pytest

from catechesis_admin.auth.session import (
    SessionManager,
    fingerprint,
    hash_password,
    verify_password,
)
from catechesis_admin.auth.validator import SessionValidator
from catechesis_admin.config.loader import AdminConfig
from catechesis_admin.errors import (
    AccountLockedError,
    InvalidCredentialsError,
    MissingConfigurationError,
)
from catechesis_admin.reliability.circuit_breaker import CircuitBreaker, CircuitConfig

PASSWORD = "segredo-123"


class FakeClock:
    def __init__(self, now: float = 1_800_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sessions(admin_config, clock):
    return SessionManager(admin_config, clock=clock)


def valid_session(now: float, session_id: str = "s1"):
    return {
        "session_id": session_id,
        "authenticated": True,
        "login_time": now - 10,
        "last_activity": now,
    }


# ── Passwords ────────────────────────────────────────────────────────


class TestPasswords:

    def test_roundtrip(self):
        stored = hash_password("correta", iterations=1000)
        assert stored.startswith("pbkdf2_sha256$1000$")
        assert verify_password("correta", stored)
        assert not verify_password("errada", stored)

    def test_salted(self):
        assert hash_password("x", iterations=1000) != hash_password("x", iterations=1000)
        assert hash_password("x", iterations=1000, salt=b"s" * 16) == hash_password("x", iterations=1000, salt=b"s" * 16)

    @pytest.mark.parametrize("stored", ["", "plain-text", "md5$1$a$b", "pbkdf2_sha256$abc$AAAA$AAAA"])
    def test_malformed_hashes_never_verify(self, stored):
        assert verify_password("x", stored) is False

    def test_fingerprint(self):
        assert fingerprint("Firefox", "10.0.0.1") == fingerprint("Firefox", "10.0.0.1")
        assert fingerprint("Firefox", "10.0.0.1") != fingerprint("Chrome", "10.0.0.1")
        assert len(fingerprint()) == 32


# ── Login ────────────────────────────────────────────────────────────


class TestLogin:

    def test_success(self, sessions):
        record = sessions.login("admin", PASSWORD, user_agent="UA", remote_addr="127.0.0.1")
        assert len(record["session_id"]) == 64
        assert record["authenticated"] is True
        assert record["fingerprint"] == fingerprint("UA", "127.0.0.1")
        assert sessions.get_diagnostics()["active_sessions"] == 1

    def test_wrong_password(self, sessions):
        with pytest.raises(InvalidCredentialsError) as exc:
            sessions.login("admin", "errada")
        assert exc.value.attempts_remaining == 4

    def test_wrong_username(self, sessions):
        with pytest.raises(InvalidCredentialsError):
            sessions.login("root", PASSWORD)

    def test_missing_hash(self, clock):
        with pytest.raises(MissingConfigurationError) as exc:
            SessionManager(AdminConfig(), clock=clock).login("admin", "x")
        assert exc.value.key == "ADMIN_PASSWORD_HASH"

    def test_lockout(self, sessions, clock):
        for remaining in (4, 3, 2, 1):
            with pytest.raises(InvalidCredentialsError) as exc:
                sessions.login("admin", "errada")
            assert exc.value.attempts_remaining == remaining

        with pytest.raises(AccountLockedError) as exc:
            sessions.login("admin", "errada")
        assert exc.value.minutes_remaining == 15

        # Even the right password is refused while locked
        with pytest.raises(AccountLockedError):
            sessions.login("admin", PASSWORD)
        assert sessions.get_lockout_time_remaining("admin") == 15
        assert sessions.get_diagnostics()["locked_users"] == ["admin"]

        clock.advance(14 * 60 + 1)
        assert sessions.get_lockout_time_remaining("admin") == 1

        clock.advance(60)
        assert sessions.get_lockout_time_remaining("admin") == 0
        assert sessions.login("admin", PASSWORD)["authenticated"] is True

    def test_success_clears_failures(self, sessions):
        for _ in range(3):
            with pytest.raises(InvalidCredentialsError):
                sessions.login("admin", "errada")
        sessions.login("admin", PASSWORD)
        with pytest.raises(InvalidCredentialsError) as exc:
            sessions.login("admin", "errada")
        assert exc.value.attempts_remaining == 4

    def test_reset_single_user(self, sessions):
        for _ in range(5):
            with pytest.raises((InvalidCredentialsError, AccountLockedError)):
                sessions.login("admin", "errada")
        sessions.reset_auth_state("admin")
        assert sessions.get_lockout_time_remaining("admin") == 0


# ── Session lifetime ─────────────────────────────────────────────────


class TestSessionLifetime:

    def test_touch(self, sessions):
        sid = sessions.login("admin", PASSWORD)["session_id"]
        assert sessions.touch(sid) == sid
        assert sessions.is_authenticated(sid)

    def test_unknown_session(self, sessions):
        assert sessions.touch("nope") is None
        assert sessions.touch(None) is None
        assert not sessions.is_authenticated("")

    def test_idle_timeout(self, sessions, clock):
        sid = sessions.login("admin", PASSWORD)["session_id"]
        clock.advance(31 * 60)
        assert sessions.touch(sid) is None
        assert sessions.get_session(sid) is None
        assert sessions.get_diagnostics()["counters"]["expired"] == 1

    def test_activity_extends_lifetime(self, sessions, clock):
        sid = sessions.login("admin", PASSWORD)["session_id"]
        clock.advance(6 * 60)
        assert sessions.touch(sid) == sid
        clock.advance(6 * 60)
        assert sessions.touch(sid) == sid
        assert sessions.get_session_time_remaining(sid) == 30

    def test_fingerprint_mismatch(self, sessions):
        sid = sessions.login("admin", PASSWORD, user_agent="Firefox", remote_addr="10.0.0.1")["session_id"]
        assert sessions.touch(sid, user_agent="Firefox", remote_addr="10.0.0.1") == sid
        assert sessions.touch(sid, user_agent="curl", remote_addr="10.0.0.9") is None
        assert sessions.get_session(sid) is None

    def test_rotation(self, sessions, clock):
        sid = sessions.login("admin", PASSWORD)["session_id"]
        clock.advance(16 * 60)
        new_sid = sessions.touch(sid)
        assert new_sid and new_sid != sid
        assert sessions.get_session(sid) is None
        assert sessions.get_session(new_sid)["session_id"] == new_sid
        assert sessions.touch(new_sid) == new_sid
        assert sessions.get_diagnostics()["counters"]["rotations"] == 1

    def test_old_id_works_briefly_after_rotation(self, sessions, clock):
        sid = sessions.login("admin", PASSWORD)["session_id"]
        clock.advance(16 * 60)
        new_sid = sessions.touch(sid)

        clock.advance(5)
        assert sessions.touch(sid) == new_sid
        clock.advance(SessionManager.ROTATION_GRACE_SECONDS)
        assert sessions.touch(sid) is None
        assert sessions.touch(new_sid) == new_sid

    def test_logout_with_rotated_id(self, sessions, clock):
        sid = sessions.login("admin", PASSWORD)["session_id"]
        clock.advance(16 * 60)
        new_sid = sessions.touch(sid)
        assert sessions.logout(sid) is True
        assert sessions.get_session(new_sid) is None

    @pytest.fixture
    def open_circuit(self, admin_config, clock):
        breaker = CircuitBreaker("validator-test", CircuitConfig(failure_threshold=1, reset_timeout_seconds=3600), clock=clock)
        sessions = SessionManager(admin_config, clock=clock, validator=SessionValidator(clock=clock, circuit_breaker=breaker))
        sid = sessions.login("admin", PASSWORD)["session_id"]
        breaker.record_failure()
        assert not sessions.validator.is_validation_allowed()
        return sessions, sid

    def test_open_validation_circuit_keeps_session(self, open_circuit, clock):
        sessions, sid = open_circuit
        clock.advance(60)
        assert sessions.touch(sid) == sid
        assert sessions.get_session(sid) is not None

    def test_open_validation_circuit_still_times_out(self, open_circuit, clock):
        sessions, sid = open_circuit
        clock.advance(31 * 60)
        assert sessions.touch(sid) is None
        assert sessions.get_session(sid) is None

    def test_concurrent_request_during_validation(self, sessions):
        sid = sessions.login("admin", PASSWORD)["session_id"]
        checking, release = threading.Event(), threading.Event()
        check = sessions.validator._check

        def slow_check(session, now):
            checking.set()
            release.wait(5)
            return check(session, now)

        sessions.validator._check = slow_check
        results = {}
        worker = threading.Thread(target=lambda: results.update(a=sessions.touch(sid)))
        worker.start()
        assert checking.wait(5)
        results["b"] = sessions.touch(sid)
        release.set()
        worker.join()

        assert results == {"a": sid, "b": sid}
        assert sessions.get_session(sid) is not None

    def test_time_remaining_and_extend(self, sessions, clock):
        sid = sessions.login("admin", PASSWORD)["session_id"]
        assert sessions.get_session_time_remaining(sid) == 30
        clock.advance(10 * 60 + 30)
        assert sessions.get_session_time_remaining(sid) == 20
        assert sessions.extend_session(sid) is True
        assert sessions.get_session_time_remaining(sid) == 30
        assert sessions.extend_session("nope") is False
        assert sessions.get_session_time_remaining("nope") == 0

    def test_extend_expired(self, sessions, clock):
        sid = sessions.login("admin", PASSWORD)["session_id"]
        clock.advance(31 * 60)
        assert sessions.extend_session(sid) is False

    def test_logout(self, sessions):
        sid = sessions.login("admin", PASSWORD)["session_id"]
        assert sessions.logout(sid) is True
        assert sessions.logout(sid) is False
        assert sessions.touch(sid) is None

    def test_reset_all(self, sessions):
        sid = sessions.login("admin", PASSWORD)["session_id"]
        sessions.reset_auth_state()
        assert sessions.get_session(sid) is None
        assert sessions.get_diagnostics()["active_sessions"] == 0

    def test_security_status(self, sessions):
        status = sessions.get_security_status()
        assert status["password_configured"] is True
        assert status["hash_scheme"] == "pbkdf2_sha256"
        assert status["rotation_minutes"] == 15
        assert status["circuit_breaker"] == "closed"


# ── Validator ────────────────────────────────────────────────────────


class TestSessionValidator:

    @pytest.fixture
    def validator(self, clock):
        return SessionValidator(clock=clock)

    def test_valid(self, validator, clock):
        result = validator.validate(valid_session(clock()))
        assert result.valid
        assert result.reason == "valid_session"

    def test_no_session(self, validator):
        assert validator.validate(None).reason == "no_session_data"
        assert validator.validate({}).reason == "no_session_data"

    def test_missing_field(self, validator, clock):
        session = valid_session(clock())
        del session["login_time"]
        result = validator.validate(session)
        assert result.reason == "missing_required_field"
        assert result.details == {"field": "login_time"}

    def test_boolean_timestamp_rejected(self, validator, clock):
        session = valid_session(clock())
        session["last_activity"] = True
        assert validator.validate(session).reason == "invalid_field_type"

    def test_timing(self, validator, clock):
        session = valid_session(clock())
        session["login_time"] = clock() + 100
        assert validator.validate(session).reason == "invalid_timing"

        future = valid_session(clock(), "s2")
        future["last_activity"] = clock() + 3600
        future["login_time"] = clock()
        assert validator.validate(future).reason == "invalid_timing"

    def test_not_authenticated(self, validator, clock):
        session = valid_session(clock())
        session["authenticated"] = False
        assert validator.validate(session).reason == "not_authenticated"

    def test_cached(self, validator, clock):
        session = valid_session(clock())
        first = validator.validate(session)
        assert validator.validate(session) is first
        assert validator.get_stats()["cached"] == 1

    def test_recent_result_reused(self, validator, clock):
        session = valid_session(clock())
        first = validator.validate(session)
        clock.advance(0.7)
        assert validator.validate(session) is first
        assert validator.get_stats()["throttled"] == 1

    def test_per_minute_limit(self, validator, clock):
        now = clock()
        for i in range(SessionValidator.MAX_PER_MINUTE):
            assert validator.validate(valid_session(now, f"s{i}")).valid
        assert validator.validate(valid_session(now, "one-too-many")).reason == "rate_limit_exceeded"
        clock.advance(60)
        assert validator.validate(valid_session(clock(), "later")).valid

    def test_circuit_breaker(self, validator, clock):
        validator.circuit_breaker.force_open()
        assert validator.validate(valid_session(clock())).reason == "circuit_breaker_open"
        validator.reset_circuit_breaker()
        assert validator.validate(valid_session(clock())).valid

    def test_forget_and_reset(self, validator, clock):
        session = valid_session(clock())
        validator.validate(session)
        validator.forget("s1")
        assert validator.get_stats()["cached_sessions"] == 0
        validator.reset()
        assert validator.get_stats()["total"] == 0
