"""
Sage Companion — FastAPI Server

================================================================================
Architecture:
  • One SessionManager per WebSocket connection (via ServiceRegistry)
  • Shared providers: Gemini (text), ElevenLabs (voice), Tavus (video avatar)
  • Every user message is crisis-checked before any generated content
  • Text replies are pushed immediately; voice clips follow when ready
================================================================================

Endpoints:
  WS   /ws/chat              — conversation stream
  GET  /health               — server health + configured providers
  GET  /sessions             — open conversation sessions
  GET  /session/{session_id} — single session detail
  POST /avatar/cleanup       — reclaim stale avatar sessions
  POST /avatar/force-cleanup — end ALL avatar sessions (operator only)
  GET  /avatar/limit         — concurrent-session limit check

Client → Server messages:
  { type: "start_session", user_id: "...", context: {...} }
  { type: "send_message", text: "..." }
  { type: "update_context", context: {...} }
  { type: "open_avatar", context: {...} }
  { type: "avatar_status" }
  { type: "close_avatar" }
  { type: "end_session" }
  { type: "ping" }

Server → Client messages:
  { type: "session_started", data: {...} }   → session snapshot
  { type: "chat", data: {...} }              → conversation message
  { type: "audio", data: {...} }             → base64 voice clip for a message
  { type: "context_updated", data: {...} }   → merged session context
  { type: "avatar", data: {...} }            → avatar session state
  { type: "session_ended", data: {...} }     → ack + summary
  { type: "pong" }                           → keepalive ack
  { type: "error", message: "..." }          → error
"""

from __future__ import annotations

import base64
import json
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .core.config import provider_cfg, server_cfg
from .core.errors import CompanionError, NoActiveSessionError
from .core.models import ConversationMessage
from .services.registry import ServiceRegistry

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logger = logging.getLogger("companion")
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)

VERSION = "1.0.0"


def _audio_frame(message: ConversationMessage) -> Dict[str, Any]:
    clip = message.audio_ref
    return {
        "type": "audio",
        "data": {
            "message_id": message.id,
            **clip.to_dict(),
            "content": base64.b64encode(clip.data).decode("ascii"),
        },
    }


def create_app(registry: Optional[ServiceRegistry] = None) -> FastAPI:
    registry = registry or ServiceRegistry.from_env()

    # -----------------------------------------------------------------------
    # Lifespan
    # -----------------------------------------------------------------------

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("🚀 Sage Companion starting...")
        logger.info(f"   Providers configured: {provider_cfg.summary()}")
        yield
        logger.info("🛑 Shutting down — closing all sessions...")
        await registry.stop_all()
        logger.info("🛑 Sage Companion stopped")

    app = FastAPI(
        title="Sage — Conversational Wellbeing Companion",
        version=VERSION,
        description=(
            "Safety-first conversational companion with fallback reply "
            "generation, background voice synthesis and managed video-avatar "
            "sessions."
        ),
        lifespan=lifespan,
    )
    app.state.registry = registry

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(server_cfg.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -----------------------------------------------------------------------
    # REST Endpoints
    # -----------------------------------------------------------------------

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "version": VERSION,
            "providers": provider_cfg.summary(),
            "active_connections": registry.active_count,
            "open_sessions": len(registry.store.all()),
        }

    @app.get("/sessions")
    async def list_sessions():
        return {
            s.id: {
                "user_id": s.user_id,
                "messages": len(s.messages),
                "started_at": s.started_at,
                "last_message_at": s.last_message_at,
                "avatar_session_ref": s.avatar_session_ref,
            }
            for s in registry.store.all()
        }

    @app.get("/session/{session_id}")
    async def session_detail(session_id: str):
        session = registry.store.get(session_id)
        if session is None:
            return JSONResponse({"error": "session not found"}, status_code=404)
        return session.to_dict()

    def _no_avatar() -> JSONResponse:
        return JSONResponse({"error": "video avatar is not configured"}, status_code=503)

    @app.post("/avatar/cleanup")
    async def avatar_cleanup():
        if registry.cleaner is None:
            return _no_avatar()
        resolved = await registry.cleaner.cleanup()
        return {"resolved": resolved}

    @app.post("/avatar/force-cleanup")
    async def avatar_force_cleanup():
        if registry.cleaner is None:
            return _no_avatar()
        try:
            ended = await registry.cleaner.end_all()
        except CompanionError as e:
            return JSONResponse({"error": str(e)}, status_code=502)
        return {"ended": ended}

    @app.get("/avatar/limit")
    async def avatar_limit():
        if registry.cleaner is None:
            return _no_avatar()
        try:
            status = await registry.cleaner.check_limit()
        except CompanionError as e:
            return JSONResponse({"error": str(e)}, status_code=502)
        return status.to_dict()

    # -----------------------------------------------------------------------
    # WebSocket
    # -----------------------------------------------------------------------

    @app.websocket("/ws/chat")
    async def websocket_chat(ws: WebSocket):
        """One SessionManager per connection."""
        await ws.accept()

        connection_id = uuid.uuid4().hex[:12]

        async def send(data: Dict[str, Any]) -> None:
            try:
                await ws.send_text(json.dumps(data))
            except Exception as e:
                logger.debug(f"[{connection_id}] Send failed: {e}")

        async def on_message(msg: ConversationMessage) -> None:
            await send({"type": "chat", "data": msg.to_dict()})

        async def on_audio(msg: ConversationMessage) -> None:
            await send(_audio_frame(msg))

        manager = registry.create(connection_id, on_message=on_message, on_audio=on_audio)

        try:
            while True:
                raw = await ws.receive_text()

                try:
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    await send({"type": "error", "message": "Invalid JSON"})
                    continue
                if not isinstance(message, dict):
                    await send({"type": "error", "message": "Message must be a JSON object"})
                    continue

                msg_type = message.get("type", "")

                try:
                    # ── Session lifecycle ──
                    if msg_type == "start_session":
                        session = await manager.start(
                            message.get("user_id") or f"anon-{connection_id}",
                            message.get("context") or {},
                        )
                        await send({"type": "session_started", "data": session.to_dict()})

                    elif msg_type == "end_session":
                        summary = await manager.end_session()
                        await send({"type": "session_ended", "data": summary or {}})

                    # ── Conversation ──
                    elif msg_type == "send_message":
                        await manager.send(message.get("text", ""))

                    elif msg_type == "update_context":
                        ctx = manager.update_context(message.get("context") or {})
                        await send({"type": "context_updated", "data": ctx.to_dict()})

                    # ── Video avatar ──
                    elif msg_type == "open_avatar":
                        avatar = await manager.open_avatar(message.get("context"))
                        await send({"type": "avatar", "data": avatar.to_dict()})

                    elif msg_type == "avatar_status":
                        avatar = await manager.refresh_avatar()
                        await send({"type": "avatar", "data": avatar.to_dict() if avatar else None})

                    elif msg_type == "close_avatar":
                        current = manager.avatar
                        await manager.close_avatar()
                        if current is not None:
                            await send({"type": "avatar", "data": current.to_dict()})

                    # ── Keepalive ──
                    elif msg_type == "ping":
                        await send({"type": "pong"})

                    else:
                        await send({"type": "error", "message": f"Unknown message type: {msg_type}"})

                except NoActiveSessionError:
                    await send({"type": "error", "message": "No active session"})
                except (CompanionError, TypeError, ValueError) as e:
                    logger.warning(f"[{connection_id}] Rejected {msg_type or 'message'}: {e}")
                    await send({"type": "error", "message": str(e)})
                except WebSocketDisconnect:
                    raise
                except Exception as e:
                    logger.error(f"[{connection_id}] Failed to handle {msg_type}: {e}", exc_info=True)
                    await send({"type": "error", "message": f"Could not handle {msg_type}"})

        except WebSocketDisconnect:
            logger.info(f"[{connection_id}] WebSocket disconnected")
        except Exception as e:
            logger.error(f"[{connection_id}] WebSocket error: {e}", exc_info=True)
        finally:
            await registry.stop(connection_id)

    return app


app = create_app()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "companion.server:app",
        host=server_cfg.host,
        port=server_cfg.port,
        reload=True,
        log_level="info",
    )
