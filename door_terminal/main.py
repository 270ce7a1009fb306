"""FastAPI entry-point for the door terminal."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import psutil
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel

from .backend.http_client import RestGuestStore
from .backend.store import GuestStore
from .config import Settings, get_settings
from .errors import DoorError, ErrorCode, NotFoundError
from .logging_config import configure_logging
from .session_manager import DoorSession

logger = logging.getLogger(__name__)

ERROR_STATUS: Dict[ErrorCode, int] = {
    ErrorCode.VALIDATION: 422,
    ErrorCode.AUTHENTICATION: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.GATE_LOCKED: status.HTTP_423_LOCKED,
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.REMOTE: status.HTTP_502_BAD_GATEWAY,
    ErrorCode.ALREADY_CHECKED_IN: status.HTTP_409_CONFLICT,
}


class PinRequest(BaseModel):
    pin: Optional[str] = None


class PinTextRequest(BaseModel):
    text: str = ""


class QueryRequest(BaseModel):
    text: str = ""


class SearchRequest(BaseModel):
    ci: Optional[str] = None


def create_app(settings: Optional[Settings] = None, store: Optional[GuestStore] = None) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(title="door-terminal", version="0.1.0")
    session = DoorSession(store or RestGuestStore(settings), settings=settings)
    app.state.session = session

    @app.exception_handler(DoorError)
    async def door_error_handler(request: Request, exc: DoorError) -> JSONResponse:
        logger.info("%s %s refused: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=ERROR_STATUS.get(exc.code, status.HTTP_400_BAD_REQUEST),
            content={"code": exc.code.value, "detail": exc.user_message, "state": session.snapshot()},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Handle request validation errors gracefully."""
        logger.warning("Validation error in %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=422,
            content={"detail": str(exc)},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> PlainTextResponse:
        """Catch-all exception handler to keep the kiosk up."""
        logger.exception("Unhandled exception in %s: %s", request.url.path, exc)
        return PlainTextResponse(
            "Internal server error",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        try:
            await session.stop()
            logger.info("Application shutdown complete")
        except Exception as e:
            logger.exception("Error during shutdown: %s", e)

    @app.get("/healthz")
    async def healthcheck() -> JSONResponse:
        return JSONResponse({"status": "ok", "gate": session.gate.value, "lookup": session.lookup.value})

    @app.get("/debug/performance")
    async def debug_performance() -> JSONResponse:
        """Get real-time CPU and memory usage."""
        try:
            cpu_percent = psutil.cpu_percent(interval=0.1)
            memory = psutil.virtual_memory()
            return JSONResponse({
                "cpu_percent": round(cpu_percent, 1),
                "memory_percent": round(memory.percent, 1),
                "memory_used_mb": round(memory.used / (1024 * 1024), 1),
                "memory_total_mb": round(memory.total / (1024 * 1024), 1),
            })
        except Exception as e:
            logger.error("Performance monitoring error: %s", e)
            return JSONResponse({"error": str(e)}, status_code=500)

    @app.get("/state")
    async def get_state() -> Dict[str, Any]:
        return session.snapshot()

    @app.post("/door/{code}")
    async def load_event(code: str) -> Dict[str, Any]:
        snapshot = await session.load_event(code)
        if snapshot["event"] is None:
            raise NotFoundError(snapshot["event_message"] or "Event not found")
        return snapshot

    @app.post("/pin/text")
    async def set_pin_text(payload: PinTextRequest) -> Dict[str, Any]:
        return await session.set_pin_text(payload.text)

    @app.post("/pin")
    async def submit_pin(payload: PinRequest) -> Dict[str, Any]:
        return await session.submit_pin(payload.pin)

    @app.post("/query")
    async def set_query(payload: QueryRequest) -> Dict[str, Any]:
        return await session.set_query_text(payload.text)

    @app.post("/search")
    async def search(payload: SearchRequest) -> Dict[str, Any]:
        return await session.submit_exact_search(payload.ci)

    @app.post("/suggestions/{guest_id}/pick")
    async def pick_suggestion(guest_id: str) -> Dict[str, Any]:
        return await session.pick_suggestion(guest_id)

    @app.post("/check-in")
    async def check_in() -> Dict[str, Any]:
        return await session.check_in()

    @app.websocket("/ws/ui")
    async def ui_socket(ws: WebSocket) -> None:
        await ws.accept()
        queue = session.register_ui()
        try:
            await ws.send_json({
                "type": "state",
                "gate": session.gate.value,
                "lookup": session.lookup.value,
                "data": session.snapshot(),
            })
            while True:
                try:
                    event = await queue.get()
                except asyncio.CancelledError:
                    break  # Clean shutdown

                payload = {
                    "type": event.type,
                    "gate": event.gate.value,
                    "lookup": event.lookup.value,
                    "data": event.data,
                }
                if event.error:
                    payload["error"] = event.error

                try:
                    await ws.send_json(payload)
                except Exception as e:
                    logger.debug("WebSocket send failed (client disconnected): %s", e)
                    break
        except WebSocketDisconnect:
            pass
        except asyncio.CancelledError:
            pass  # Clean shutdown
        except Exception as e:
            logger.error("Unexpected error in UI websocket: %s", e)
        finally:
            session.unregister_ui(queue)
            try:
                await ws.close()
            except Exception:
                pass

    return app


def run() -> None:
    import uvicorn

    settings = get_settings()
    configure_logging(settings.log_level, settings.log_directory, settings.log_retention_days)
    uvicorn.run(create_app(settings), host=settings.terminal_host, port=settings.terminal_port)


if __name__ == "__main__":
    run()
