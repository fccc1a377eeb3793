"""FastAPI application — HTTP + WebSocket endpoints for restaurant reservations.

Endpoints:

  GET    /health                       Health check
  POST   /api/reservations             Public booking form submit
  POST   /api/auth/login               Admin sign-in, mounts the dashboard
  POST   /api/auth/logout              Admin sign-out
  GET    /api/auth/session             Current admin session
  GET    /api/reservations             Dashboard snapshot (?q= filters)
  POST   /api/reservations/refresh     Manual full refetch
  PATCH  /api/reservations/{id}        Dashboard edit (status, name, phone, date, timeSlot)
  DELETE /api/reservations/{id}        Administrative delete
  POST   /api/reservations/update      Legacy update endpoint (PUT accepted too)
  POST   /webhooks/booking             Webhook relay, called by the database trigger
  WS     /ws/dashboard?token=          Live dashboard events

The booking flow:
  1. Visitor submits the form → POST /api/reservations → row inserted as Pending
  2. The database change feed fires
  3. The realtime channel delivers the row to the admin dashboard
  4. The database trigger calls POST /webhooks/booking → automation URL
"""

from __future__ import annotations

# Load .env into os.environ early: SupabaseBackend falls back to
# SUPABASE_URL / SUPABASE_ANON_KEY via os.environ.
from dotenv import load_dotenv
load_dotenv()

import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Optional

# Configure root logger early so all app loggers have a handler and are
# visible when run via `uvicorn reservations.app:app`.
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)-20s %(levelname)-7s %(message)s",
)

import httpx
from fastapi import Depends, FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from reservations.auth import (
    AuthSessionManager,
    FastPathAuthCache,
    require_admin_session,
    require_admin_ws,
)
from reservations.backends.base import AuthSession, ReservationBackend
from reservations.config import Settings, settings
from reservations.dashboard import Dashboard
from reservations.events import EventBroadcaster
from reservations.models.reservation import format_display_date
from reservations.models.results import INVALID, NOT_FOUND, UNAUTHENTICATED, StoreResult
from reservations.notifications import PushNotifier
from reservations.store import ReservationStore
from reservations.webhook import WebhookRelay

log = logging.getLogger("reservations.app")

_START_TIME = time.time()

_ERROR_STATUS = {INVALID: 400, NOT_FOUND: 404, UNAUTHENTICATED: 401}


class LoginRequest(BaseModel):
    email: str
    password: str


@dataclass
class Services:
    """Everything the endpoints share. One per app."""

    config: Settings
    backend: ReservationBackend
    store: ReservationStore
    auth: AuthSessionManager
    relay: WebhookRelay
    notifier: PushNotifier
    events: EventBroadcaster
    dashboard: Optional[Dashboard] = None


def create_app(
    config: Settings | None = None,
    backend: ReservationBackend | None = None,
    service_backend: ReservationBackend | None = None,
    relay_transport: httpx.AsyncBaseTransport | None = None,
    notifier: PushNotifier | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Settings; defaults to the environment.
        backend: Backend for the booking form and the admin (anon key +
            admin session).  Defaults to Supabase.
        service_backend: Service-role backend for the webhook relay.
            Defaults to Supabase when SUPABASE_SERVICE_ROLE_KEY is set.
        relay_transport: httpx transport for the relay's outbound POST.
        notifier: Push notifier for new bookings.
    """
    config = config or settings

    if backend is None:
        from reservations.backends.supabase import SupabaseBackend

        backend = SupabaseBackend(
            url=config.supabase_url,
            key=config.supabase_anon_key,
            table=config.reservations_table,
        )
    if service_backend is None and config.supabase_service_role_key:
        from reservations.backends.supabase import SupabaseBackend

        service_backend = SupabaseBackend(
            url=config.supabase_url,
            key=config.supabase_service_role_key,
            table=config.reservations_table,
        )

    services = Services(
        config=config,
        backend=backend,
        store=ReservationStore(backend),
        auth=AuthSessionManager(
            backend,
            FastPathAuthCache(ttl=config.auth_cache_ttl, state_path=config.auth_state_path or None),
        ),
        relay=WebhookRelay(
            service_backend,
            config.webhook_destination,
            timeout=config.webhook_timeout,
            transport=relay_transport,
        ),
        notifier=notifier or PushNotifier(config.push_notification_url),
        events=EventBroadcaster(),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if services.dashboard is not None:
            await services.dashboard.unmount()

    app = FastAPI(
        title="Restaurant Reservations",
        description="Booking form backend, live admin dashboard and automation webhook relay",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.services = services
    app.state.auth = services.auth

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
    )

    # ── Health check ───────────────────────────────────────────

    @app.get("/health")
    async def health() -> JSONResponse:
        uptime = round(time.time() - _START_TIME, 1)
        return JSONResponse({"status": "ok", "uptime": uptime})

    # ── Public booking form ────────────────────────────────────

    @app.post("/api/reservations")
    async def create_reservation(request: Request) -> JSONResponse:
        """Booking form submit. Status is always Pending."""
        body = await _json_body(request)
        if body is None:
            return JSONResponse({"success": False, "message": "Invalid JSON body"}, status_code=400)

        result = await services.store.create(body)
        if not result.success:
            status_code = 400 if result.error == INVALID else 502
            return JSONResponse(result.to_dict(), status_code=status_code)

        payload = result.to_dict()
        # Echoed back for the thank-you page
        payload["reservation"] = {
            "name": body.get("name"),
            "phone": body.get("phone"),
            "date": body.get("date"),
            "timeSlot": body.get("timeSlot", body.get("time_slot")),
            "displayDate": format_display_date(str(body.get("date") or "")),
        }
        return JSONResponse(payload, status_code=201)

    # ── Admin auth ─────────────────────────────────────────────

    @app.post("/api/auth/login")
    async def login(credentials: LoginRequest) -> JSONResponse:
        result = await services.auth.login(credentials.email, credentials.password)
        if not result.success or result.session is None:
            return JSONResponse(
                {"success": False, "message": result.message or "Invalid credentials"},
                status_code=401,
            )

        await _start_dashboard(services)
        return JSONResponse({
            "success": True,
            "accessToken": result.session.access_token,
            "expiresAt": result.session.expires_at,
        })

    @app.post("/api/auth/logout")
    async def logout(session: AuthSession = Depends(require_admin_session)) -> JSONResponse:
        dashboard, services.dashboard = services.dashboard, None
        if dashboard is not None:
            result = await dashboard.logout()
        else:
            result = await services.auth.logout()
        return JSONResponse({
            "success": result.success,
            "message": "Logged out successfully" if result.success
            else f"{result.message or 'Logout failed'}, but local session cleared",
        })

    @app.get("/api/auth/session")
    async def current_session(session: AuthSession = Depends(require_admin_session)) -> JSONResponse:
        return JSONResponse({
            "authenticated": True,
            "email": session.user_email,
            "expiresAt": session.expires_at,
        })

    # ── Admin dashboard ────────────────────────────────────────

    @app.get("/api/reservations")
    async def list_reservations(
        q: str = "", session: AuthSession = Depends(require_admin_session)
    ) -> JSONResponse:
        dashboard = await _ensure_dashboard(services)
        return JSONResponse(dashboard.snapshot(q or None))

    @app.post("/api/reservations/refresh")
    async def refresh_reservations(session: AuthSession = Depends(require_admin_session)) -> JSONResponse:
        dashboard = await _ensure_dashboard(services)
        await dashboard.refresh()
        return JSONResponse(dashboard.snapshot())

    # ── Legacy update endpoint ─────────────────────────────────
    # Registered before /{reservation_id} routes; same write path as the dashboard.

    @app.api_route("/api/reservations/update", methods=["POST", "PUT"])
    async def legacy_update(
        request: Request, session: AuthSession = Depends(require_admin_session)
    ) -> JSONResponse:
        body = await _json_body(request)
        if body is None:
            return JSONResponse({"success": False, "message": "Invalid JSON body"}, status_code=400)

        reservation_id = body.get("id")
        if isinstance(reservation_id, bool) or not isinstance(reservation_id, (str, int)) \
                or not str(reservation_id).strip():
            return JSONResponse({"success": False, "message": "Invalid reservation ID"}, status_code=400)

        fields = {k: v for k, v in body.items() if k != "id"}
        result = await services.store.update(str(reservation_id).strip(), fields)
        if result.success:
            return JSONResponse({"success": True, "message": result.message})

        status_code = _ERROR_STATUS.get(result.error, 500)
        message = result.message if status_code != 500 else "Error updating reservation"
        return JSONResponse({"success": False, "message": message}, status_code=status_code)

    @app.patch("/api/reservations/{reservation_id}")
    async def edit_reservation(
        reservation_id: str,
        request: Request,
        session: AuthSession = Depends(require_admin_session),
    ) -> JSONResponse:
        body = await _json_body(request)
        if body is None:
            return JSONResponse({"success": False, "message": "Invalid JSON body"}, status_code=400)

        dashboard = await _ensure_dashboard(services)
        result = await dashboard.update_reservation(reservation_id, body)
        return _result_response(result)

    @app.delete("/api/reservations/{reservation_id}")
    async def delete_reservation(
        reservation_id: str, session: AuthSession = Depends(require_admin_session)
    ) -> JSONResponse:
        dashboard = await _ensure_dashboard(services)
        ok = await dashboard.delete_reservation(reservation_id)
        return JSONResponse({"success": ok}, status_code=200 if ok else 502)

    # ── Webhook relay ──────────────────────────────────────────

    @app.post("/webhooks/booking")
    async def booking_webhook(request: Request) -> JSONResponse:
        """Called by the database trigger once per INSERT / UPDATE."""
        try:
            body: Any = await request.json()
        except ValueError:
            body = None
        status_code, payload = await services.relay.handle(body)
        return JSONResponse(payload, status_code=status_code)

    # ── Live dashboard stream ──────────────────────────────────

    @app.websocket("/ws/dashboard")
    async def dashboard_stream(
        websocket: WebSocket,
        session: Optional[AuthSession] = Depends(require_admin_ws),
    ) -> None:
        """Streams dashboard events, starting with a full snapshot."""
        if session is None:
            return

        await websocket.accept()
        dashboard = await _ensure_dashboard(services)
        queue = services.events.subscribe()

        try:
            await websocket.send_json({
                "type": "snapshot",
                "timestamp": time.time(),
                "data": dashboard.snapshot(),
            })
            while True:
                event = await queue.get()
                await websocket.send_json(event)
        except WebSocketDisconnect:
            pass
        except Exception as e:
            log.warning("Dashboard stream error: %s", e)
        finally:
            services.events.unsubscribe(queue)

    return app


# ── Helper functions ──────────────────────────────────────────────


async def _json_body(request: Request) -> Optional[dict[str, Any]]:
    try:
        body = await request.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


def _result_response(result: StoreResult) -> JSONResponse:
    if result.success:
        return JSONResponse(result.to_dict())
    return JSONResponse(result.to_dict(), status_code=_ERROR_STATUS.get(result.error, 502))


def _new_dashboard(services: Services) -> Dashboard:
    return Dashboard.from_settings(
        services.store,
        services.auth,
        services.backend,
        events=services.events,
        notifier=services.notifier,
        config=services.config,
    )


async def _start_dashboard(services: Services) -> Dashboard:
    """Replace any running dashboard with a freshly mounted one."""
    previous, services.dashboard = services.dashboard, None
    if previous is not None:
        await previous.unmount()
    dashboard = _new_dashboard(services)
    services.dashboard = dashboard
    await dashboard.mount()
    return dashboard


async def _ensure_dashboard(services: Services) -> Dashboard:
    """Mounted dashboard for a request whose bearer token was just verified."""
    dashboard = services.dashboard
    if dashboard is not None and dashboard.is_mounted:
        return dashboard
    # The backend just confirmed the session, so the fast path may be renewed
    services.auth.cache.mark_authenticated()
    return await _start_dashboard(services)


# ── Module-level app instance for uvicorn ──────────────────────

app = create_app()


if __name__ == "__main__":
    import uvicorn

    for warning in settings.validate_startup():
        log.warning(warning)

    log_config = uvicorn.config.LOGGING_CONFIG
    log_config["formatters"]["default"]["fmt"] = (
        "%(asctime)s %(name)-12s %(levelname)-8s %(message)s"
    )

    uvicorn.run(
        "reservations.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_config=log_config,
    )
