"""
Auth Module — Admin login, sessions and session validation.
"""

from .session import SessionManager, fingerprint, hash_password, verify_password
from .validator import SessionValidation, SessionValidator

__all__ = [
    "SessionManager",
    "SessionValidator",
    "SessionValidation",
    "hash_password",
    "verify_password",
    "fingerprint",
]
