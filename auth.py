# auth.py — HealthPulse Collect
# Admin login against the admin_portal table (plaintext, exact match).

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from models import AdminCredential, clean_text
from store import RecordStore, StoreError

logger = logging.getLogger(__name__)

INVALID_LOGIN = "Invalid username or password"


class AuthenticationError(ValueError):
    pass


@dataclass(frozen=True)
class AdminSession:
    username: str = ""
    authenticated: bool = False
    logged_in_at: str = ""

    def require(self) -> "AdminSession":
        if not self.authenticated:
            raise PermissionError("Admin login required.")
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "username": self.username,
            "authenticated": self.authenticated,
            "logged_in_at": self.logged_in_at,
        }

    @classmethod
    def anonymous(cls) -> "AdminSession":
        return cls()

    @classmethod
    def from_cookie(cls, data: Mapping[str, Any]) -> "AdminSession":
        username = clean_text(data.get("admin_username"))
        if not username:
            return cls.anonymous()
        return cls(
            username=username,
            authenticated=True,
            logged_in_at=clean_text(data.get("admin_logged_in_at")),
        )

    def to_cookie(self) -> Dict[str, str]:
        return {"admin_username": self.username, "admin_logged_in_at": self.logged_in_at}


def authenticate(store: RecordStore, username: str, password: str) -> AdminSession:
    """
    Exact-match lookup; no hashing, no lockout. Store failures are reported
    as a failed login, like any other miss.
    """
    cred = AdminCredential(username=clean_text(username), password=password or "")
    if not cred.username or not cred.password:
        raise AuthenticationError(INVALID_LOGIN)
    try:
        row = store.select_one("admin_portal", {"username": cred.username})
    except StoreError as exc:
        logger.error("Admin lookup failed: %s", exc)
        raise AuthenticationError(INVALID_LOGIN) from exc
    stored = str(row.get("password") or "") if row else ""
    # compared as bytes; compare_digest only takes ASCII str
    if not row or not hmac.compare_digest(stored.encode("utf-8"), cred.password.encode("utf-8")):
        logger.info("Admin login failed for %r", cred.username)
        raise AuthenticationError(INVALID_LOGIN)
    logger.info("Admin %r logged in", cred.username)
    return AdminSession(
        username=cred.username,
        authenticated=True,
        logged_in_at=datetime.now().isoformat(timespec="seconds"),
    )


def ensure_admin_credential(store: RecordStore, username: str, password: str) -> Optional[Dict[str, Any]]:
    username = clean_text(username)
    if not username or not password:
        return None
    existing = store.select_one("admin_portal", {"username": username})
    if existing:
        return existing
    return store.insert("admin_portal", {"username": username, "password": password})
