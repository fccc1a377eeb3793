"""Admin authentication: session manager, fast-path cache and FastAPI guards.

The backend's auth provider is the only authority on whether an admin is
signed in.  ``FastPathAuthCache`` mirrors a successful check locally so
the dashboard can skip a round trip before its first render; its entries
expire after a fixed TTL and are never trusted for API access.

Two guards:
  - require_admin_session() — HTTP endpoints (Bearer token in Authorization header)
  - require_admin_ws()      — WebSocket endpoints (?token= query param, closes 4001)

Behavior matrix:
  backend session + matching token   → allow
  backend session + wrong/missing    → 401 Unauthorized
  no backend session                 → 401 Unauthorized
  backend error during the check     → 401 Unauthorized (logged)
"""

from __future__ import annotations

import json
import logging
import secrets
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from fastapi import Depends, HTTPException, Query, Request, WebSocket, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from reservations.backends.base import AuthSession, ReservationBackend

log = logging.getLogger("reservations.auth")

_bearer_scheme = HTTPBearer(auto_error=False)


class FastPathAuthCache:
    """Advisory "is an admin signed in" flags with a staleness bound.

    Two flags, like a browser's localStorage + sessionStorage pair:
      - persistent: a small JSON file, survives restarts (only when
        ``state_path`` is set)
      - process: in memory, gone on restart
    Either unexpired flag counts as authenticated.
    """

    def __init__(
        self,
        ttl: float,
        state_path: str | Path | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._ttl = ttl
        self._path = Path(state_path) if state_path else None
        self._clock = clock
        self._process_expires_at: Optional[float] = None

    def mark_authenticated(self) -> None:
        expires_at = self._clock() + self._ttl
        self._process_expires_at = expires_at
        if self._path is None:
            return
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps({"isAuthenticated": True, "authExpiry": expires_at}))
        except OSError as e:
            log.warning("Could not persist auth flag to %s: %s", self._path, e)

    def _persistent_expiry(self) -> Optional[float]:
        if self._path is None or not self._path.exists():
            return None
        try:
            data = json.loads(self._path.read_text())
        except (OSError, ValueError) as e:
            log.warning("Ignoring unreadable auth flag %s: %s", self._path, e)
            return None
        if not isinstance(data, dict) or not data.get("isAuthenticated"):
            return None
        expiry = data.get("authExpiry")
        return float(expiry) if isinstance(expiry, (int, float)) else None

    def is_authenticated(self) -> bool:
        now = self._clock()
        for expires_at in (self._process_expires_at, self._persistent_expiry()):
            if expires_at is not None and expires_at > now:
                return True
        return False

    def clear(self) -> None:
        self._process_expires_at = None
        if self._path is None:
            return
        try:
            self._path.unlink(missing_ok=True)
        except OSError as e:
            log.warning("Could not remove auth flag %s: %s", self._path, e)


@dataclass
class AuthResult:
    success: bool
    message: str = ""
    session: Optional[AuthSession] = None


class AuthSessionManager:
    """Sign in / sign out against the backend and keep the fast-path cache in step."""

    def __init__(self, backend: ReservationBackend, cache: FastPathAuthCache) -> None:
        self._backend = backend
        self._cache = cache

    @property
    def cache(self) -> FastPathAuthCache:
        return self._cache

    async def login(self, email: str, password: str) -> AuthResult:
        try:
            session = await self._backend.sign_in(email, password)
        except Exception as e:
            log.error("Auth error during login: %s", e)
            return AuthResult(success=False, message=str(e) or "Invalid credentials")

        if session is None:
            return AuthResult(success=False, message="No session created")

        self._cache.mark_authenticated()
        log.info("Admin signed in: %s", session.user_email or "<unknown>")
        return AuthResult(success=True, session=session)

    async def logout(self) -> AuthResult:
        """Sign out. Local flags are cleared whatever the backend says."""
        try:
            await self._backend.sign_out()
        except Exception as e:
            log.error("Error during logout: %s", e)
            return AuthResult(success=False, message=str(e) or "Logout failed")
        finally:
            self._cache.clear()
        return AuthResult(success=True)

    async def get_session(self) -> Optional[AuthSession]:
        """Authoritative check. Raises BackendError when the provider can't answer."""
        return await self._backend.get_session()


# ── FastAPI guards ─────────────────────────────────────────────────


async def verify_admin_token(manager: AuthSessionManager, token: str) -> AuthSession:
    """Compare a bearer token with the backend's current session token."""
    try:
        session = await manager.get_session()
    except Exception as e:
        log.error("Session check failed: %s", e)
        session = None

    if session is None or not token or not secrets.compare_digest(session.access_token, token):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing admin token.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return session


async def require_admin_session(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> AuthSession:
    """FastAPI dependency — protect HTTP admin endpoints with the session token."""
    token = credentials.credentials if credentials else ""
    return await verify_admin_token(request.app.state.auth, token)


async def require_admin_ws(
    websocket: WebSocket,
    token: str = Query(default=""),
) -> Optional[AuthSession]:
    """WebSocket auth — browsers can't send headers, so use ?token= query param.

    Closes the socket and returns None on failure; the endpoint must stop.
    """
    try:
        return await verify_admin_token(websocket.app.state.auth, token)
    except HTTPException:
        await websocket.close(code=4001, reason="Unauthorized")
        return None
