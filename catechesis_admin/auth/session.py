"""
Session Manager — Admin login, lockout and session lifetime.

Single administrator, credentials from the environment. Sessions live
in server memory; restarting the server logs everyone out.

## Password hashes

Stored as ``pbkdf2_sha256$<iterations>$<salt_b64>$<hash_b64>``.
Generate one with ``catechesis-admin hash-password``.

## Lockout

After ``max_login_attempts`` failures for a username, logins for that
name are refused for ``lockout_minutes``. A successful login clears the
failure record.

## Rotation

Session ids are replaced every ``ROTATION_MINUTES``; ``touch()``
returns the id the client should use from now on.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import math
import os
import secrets
import time
from threading import RLock
from typing import Any, Callable, Dict, Optional, Tuple

from cryptography.exceptions import InvalidKey
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..config.loader import AdminConfig
from ..errors import AccountLockedError, InvalidCredentialsError, MissingConfigurationError
from .validator import SessionValidator

logger = logging.getLogger(__name__)

HASH_SCHEME = "pbkdf2_sha256"
DEFAULT_ITERATIONS = 480_000
SALT_BYTES = 16

# Validator outcomes that say nothing about the session itself
THROTTLED_REASONS = ("circuit_breaker_open", "rate_limited", "rate_limit_exceeded")


# ── Password hashing ─────────────────────────────────────────────


def _kdf(salt: bytes, iterations: int) -> PBKDF2HMAC:
    return PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=iterations,
    )


def hash_password(password: str, iterations: int = DEFAULT_ITERATIONS, salt: Optional[bytes] = None) -> str:
    """Hash a password for ``ADMIN_PASSWORD_HASH``."""
    salt = salt or os.urandom(SALT_BYTES)
    key = _kdf(salt, iterations).derive(password.encode("utf-8"))
    return "$".join([
        HASH_SCHEME,
        str(iterations),
        base64.b64encode(salt).decode("ascii"),
        base64.b64encode(key).decode("ascii"),
    ])


def verify_password(password: str, stored: str) -> bool:
    """Constant-time check of ``password`` against a stored hash."""
    try:
        scheme, iterations, salt_b64, hash_b64 = stored.split("$")
        if scheme != HASH_SCHEME:
            return False
        salt = base64.b64decode(salt_b64)
        expected = base64.b64decode(hash_b64)
        _kdf(salt, int(iterations)).verify(password.encode("utf-8"), expected)
        return True
    except InvalidKey:
        return False
    except (ValueError, TypeError) as e:
        logger.error(f"Malformed password hash: {e}")
        return False


def fingerprint(user_agent: str = "", remote_addr: str = "") -> str:
    return hashlib.sha256(f"{user_agent}|{remote_addr}".encode("utf-8")).hexdigest()[:32]


# ── Sessions ─────────────────────────────────────────────────────


class SessionManager:
    """
    In-memory session store for the admin panel.

    Usage:
        sessions = SessionManager(get_config())
        record = sessions.login("admin", "secret", user_agent=ua, remote_addr=ip)
        sid = sessions.touch(record["session_id"], user_agent=ua, remote_addr=ip)
    """

    ROTATION_MINUTES = 15
    ROTATION_GRACE_SECONDS = 30

    def __init__(
        self,
        config: AdminConfig,
        clock: Callable[[], float] = time.time,
        validator: Optional[SessionValidator] = None,
    ):
        self.config = config
        self._clock = clock
        self.validator = validator or SessionValidator(clock=clock)
        self._lock = RLock()
        self._sessions: Dict[str, Dict[str, Any]] = {}
        self._failures: Dict[str, Dict[str, Any]] = {}
        self._rotated: Dict[str, Tuple[str, float]] = {}
        self._counts = {"logins": 0, "failed_logins": 0, "lockouts": 0, "expired": 0, "rotations": 0}

    @property
    def timeout_seconds(self) -> float:
        return self.config.session_timeout_minutes * 60

    # ── Login ────────────────────────────────────────────────────

    def get_lockout_time_remaining(self, username: str) -> int:
        """Minutes (rounded up) until ``username`` may try again; 0 if not locked."""
        with self._lock:
            record = self._failures.get(username)
            if not record or not record.get("locked_until"):
                return 0
            remaining = record["locked_until"] - self._clock()
            if remaining <= 0:
                del self._failures[username]
                return 0
            return math.ceil(remaining / 60)

    def login(
        self,
        username: str,
        password: str,
        user_agent: str = "",
        remote_addr: str = "",
    ) -> Dict[str, Any]:
        """
        Check credentials and open a session.

        Raises:
            MissingConfigurationError: No password hash configured
            AccountLockedError: Too many recent failures for this username
            InvalidCredentialsError: Wrong username or password
        """
        if not self.config.admin_password_hash:
            raise MissingConfigurationError("ADMIN_PASSWORD_HASH")

        locked = self.get_lockout_time_remaining(username)
        if locked:
            raise AccountLockedError(locked)

        user_ok = hmac.compare_digest(username.encode("utf-8"), self.config.admin_username.encode("utf-8"))
        password_ok = verify_password(password, self.config.admin_password_hash)
        if not (user_ok and password_ok):
            self._record_failure(username)

        now = self._clock()
        session = {
            "session_id": secrets.token_hex(32),
            "username": username,
            "authenticated": True,
            "login_time": now,
            "last_activity": now,
            "last_rotation": now,
            "fingerprint": fingerprint(user_agent, remote_addr),
        }
        with self._lock:
            self._failures.pop(username, None)
            self._sessions[session["session_id"]] = session
            self._counts["logins"] += 1
        logger.info(f"Admin login: {username}")
        return dict(session)

    def _record_failure(self, username: str) -> None:
        """Count a failed login and raise the matching error."""
        with self._lock:
            record = self._failures.setdefault(username, {"count": 0, "locked_until": None})
            record["count"] += 1
            record["last_failed"] = self._clock()
            self._counts["failed_logins"] += 1
            remaining = self.config.max_login_attempts - record["count"]

            if remaining <= 0:
                record["locked_until"] = self._clock() + self.config.lockout_minutes * 60
                self._counts["lockouts"] += 1
                logger.warning(
                    f"Login locked for {username} after {record['count']} failed attempts"
                )
                raise AccountLockedError(self.config.lockout_minutes)

        logger.warning(f"Failed login for {username}: {remaining} attempts remaining")
        raise InvalidCredentialsError(
            f"Usuário ou senha inválidos. {remaining} tentativa(s) restante(s).",
            attempts_remaining=remaining,
        )

    # ── Session checks ───────────────────────────────────────────

    def get_session(self, session_id: Optional[str]) -> Optional[Dict[str, Any]]:
        if not session_id:
            return None
        with self._lock:
            session = self._sessions.get(session_id)
            return dict(session) if session else None

    def _resolve(self, session_id: Optional[str]) -> Optional[str]:
        """The live id for ``session_id``, following a rotation inside the grace window."""
        if not session_id:
            return None
        with self._lock:
            if session_id in self._sessions:
                return session_id
            alias = self._rotated.get(session_id)
            if alias is None:
                return None
            new_id, rotated_at = alias
            if self._clock() - rotated_at > self.ROTATION_GRACE_SECONDS or new_id not in self._sessions:
                del self._rotated[session_id]
                return None
            return new_id

    def _destroy(self, session_id: str, reason: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)
            self._rotated = {
                old: alias for old, alias in self._rotated.items()
                if old != session_id and alias[0] != session_id
            }
        self.validator.forget(session_id)
        logger.info(f"Session ended ({reason})")

    def is_authenticated(self, session_id: Optional[str]) -> bool:
        """Validate, apply the idle timeout and refresh activity."""
        return self.touch(session_id) is not None

    def touch(
        self,
        session_id: Optional[str],
        user_agent: Optional[str] = None,
        remote_addr: Optional[str] = None,
    ) -> Optional[str]:
        """
        Validate a session and record activity.

        Returns the session id to use from now on (rotated every
        ``ROTATION_MINUTES``), or None when the session is not valid.
        When ``user_agent`` and ``remote_addr`` are given they must match
        the fingerprint taken at login.

        A throttled validation (rate limit, open circuit) does not end an
        authenticated session; the idle timeout and fingerprint checks
        still run against the stored record. An id replaced by rotation
        keeps resolving for ``ROTATION_GRACE_SECONDS`` so requests already
        in flight are not rejected.
        """
        current_id = self._resolve(session_id)
        session = self.get_session(current_id)
        if session is None:
            return None

        result = self.validator.validate(session)
        if not result.valid:
            if result.reason not in THROTTLED_REASONS:
                self._destroy(current_id, result.reason)
                return None
            if session.get("authenticated") is not True:
                return None

        now = self._clock()
        if now - session["last_activity"] > self.timeout_seconds:
            with self._lock:
                self._counts["expired"] += 1
            self._destroy(current_id, "expired")
            return None

        if user_agent is not None and remote_addr is not None:
            if not hmac.compare_digest(session["fingerprint"], fingerprint(user_agent, remote_addr)):
                logger.warning("Session fingerprint mismatch, ending session")
                self._destroy(current_id, "fingerprint_mismatch")
                return None

        with self._lock:
            stored = self._sessions.get(current_id)
            if stored is None:
                return None
            stored["last_activity"] = now

            if now - stored["last_rotation"] >= self.ROTATION_MINUTES * 60:
                new_id = secrets.token_hex(32)
                stored["session_id"] = new_id
                stored["last_rotation"] = now
                self._sessions[new_id] = self._sessions.pop(current_id)
                self._rotated = {
                    old: alias for old, alias in self._rotated.items()
                    if now - alias[1] <= self.ROTATION_GRACE_SECONDS
                }
                self._rotated[current_id] = (new_id, now)
                self._counts["rotations"] += 1
                self.validator.forget(current_id)
                logger.debug("Session id rotated")
                return new_id

        return current_id

    def extend_session(self, session_id: Optional[str]) -> bool:
        """Reset the idle timer of a still-valid session."""
        with self._lock:
            session = self._sessions.get(session_id or "")
            if not session:
                return False
            if self._clock() - session["last_activity"] > self.timeout_seconds:
                return False
            session["last_activity"] = self._clock()
        return True

    def get_session_time_remaining(self, session_id: Optional[str]) -> int:
        """Minutes (rounded up) before the session times out."""
        session = self.get_session(session_id)
        if session is None:
            return 0
        remaining = self.timeout_seconds - (self._clock() - session["last_activity"])
        return max(0, math.ceil(remaining / 60))

    def logout(self, session_id: Optional[str]) -> bool:
        current_id = self._resolve(session_id)
        if current_id is None:
            return False
        self._destroy(current_id, "logout")
        return True

    def reset_auth_state(self, username: Optional[str] = None) -> None:
        """Clear lockouts (for one user or all) and drop all sessions when no user given."""
        with self._lock:
            if username:
                self._failures.pop(username, None)
                return
            self._failures.clear()
            self._sessions.clear()
            self._rotated.clear()
        self.validator.reset()
        logger.info("Authentication state reset")

    # ── Diagnostics ──────────────────────────────────────────────

    def get_diagnostics(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "active_sessions": len(self._sessions),
                "locked_users": [
                    u for u, r in self._failures.items()
                    if r.get("locked_until") and r["locked_until"] > self._clock()
                ],
                "counters": dict(self._counts),
                "validator": self.validator.get_stats(),
            }

    def get_security_status(self) -> Dict[str, Any]:
        return {
            "password_configured": bool(self.config.admin_password_hash),
            "hash_scheme": (self.config.admin_password_hash or "").split("$", 1)[0] or None,
            "session_timeout_minutes": self.config.session_timeout_minutes,
            "max_login_attempts": self.config.max_login_attempts,
            "lockout_minutes": self.config.lockout_minutes,
            "rotation_minutes": self.ROTATION_MINUTES,
            "circuit_breaker": self.validator.circuit_breaker.state.value,
        }
