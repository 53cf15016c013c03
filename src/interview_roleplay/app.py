# interview_roleplay/app.py
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from interview_roleplay import __version__
from interview_roleplay.consts import SERVICE_NAME
from interview_roleplay.core import PATTERNS
from interview_roleplay.core.factory import build_connection_factory
from interview_roleplay.core.orchestrator import SessionOrchestrator
from interview_roleplay.core.recorder import MemoryRecorder, NullRecorder, SessionRecorder
from interview_roleplay.core.rules import DEFAULT_RULES, load_rules
from interview_roleplay.core.scoring import ScoringEngine
from interview_roleplay.core.types import AdvanceTrigger, Mode, Pattern
from interview_roleplay.schemas import HealthResponse, PatternInfo
from interview_roleplay.settings import settings

logger = logging.getLogger("interview_roleplay")


def build_recorder(kind: str) -> SessionRecorder:
    if kind == "memory":
        return MemoryRecorder()
    return NullRecorder()


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.connection_factory = build_connection_factory(settings)
    app.state.recorder = build_recorder(settings.RECORDER)
    rules = load_rules(settings.RULES_PATH) if settings.RULES_PATH else DEFAULT_RULES
    app.state.scoring = ScoringEngine(rules)
    yield


def build_orchestrator(app: FastAPI, send) -> SessionOrchestrator:
    return SessionOrchestrator(
        app.state.connection_factory,
        send,
        recorder=app.state.recorder,
        scoring=app.state.scoring,
        end_marker=settings.END_MARKER,
        abort_marker=settings.ABORT_MARKER,
        default_mode=Mode(settings.DEFAULT_MODE),
        default_pattern=Pattern(settings.DEFAULT_PATTERN),
        advance_trigger=AdvanceTrigger(settings.TURN_ADVANCE_TRIGGER),
        max_turns=settings.MAX_TURNS,
    )


def create_app() -> FastAPI:
    app = FastAPI(
        title="Interview Roleplay API",
        description="Multi-party interview role-play orchestrator",
        version=__version__,
        lifespan=lifespan,
    )

    @app.get("/", response_model=HealthResponse)
    async def root():
        return HealthResponse(service=SERVICE_NAME, version=__version__)

    @app.get("/v1/patterns", response_model=List[PatternInfo], response_model_by_alias=True)
    async def list_patterns():
        return [
            PatternInfo(
                pattern=cfg.pattern,
                title=cfg.title,
                participants=list(cfg.participants),
                first_speaker=cfg.first_speaker,
            )
            for cfg in PATTERNS.values()
        ]

    @app.websocket("/ws")
    async def session_socket(websocket: WebSocket):
        await websocket.accept()
        outbox: asyncio.Queue[Dict[str, Any]] = asyncio.Queue()

        async def pump() -> None:
            while True:
                msg = await outbox.get()
                await websocket.send_json(msg)

        writer = asyncio.create_task(pump(), name="ws-writer")
        orchestrator = build_orchestrator(app, outbox.put_nowait)
        logger.info("Client connected, session %s", orchestrator.session_id)
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", 1000))
                # text and binary frames both carry JSON
                raw = message.get("text") or message.get("bytes") or ""
                await orchestrator.handle_client_message(raw)
        except WebSocketDisconnect:
            logger.info("Client disconnected, session %s", orchestrator.session_id)
        finally:
            await orchestrator.shutdown()
            writer.cancel()
            (res,) = await asyncio.gather(writer, return_exceptions=True)
            if isinstance(res, Exception):
                logger.info("Writer for session %s stopped: %s", orchestrator.session_id, res)

    return app
