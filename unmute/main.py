"""Main FastAPI application."""
import asyncio
import contextlib
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles

from unmute.api import audio, auth, calls, health, history, realtime
from unmute.api.webhooks import voice as voice_webhooks
from unmute.core.config import settings
from unmute.core.dependencies import get_audio_store, get_call_store
from unmute.core.logging import setup_logging
from unmute.db.database import init_db
from unmute.services.call_session.store import run_eviction_loop

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    setup_logging(settings.log_level)
    await init_db()
    eviction_task = asyncio.create_task(
        run_eviction_loop(get_call_store(), settings.session_sweep_interval_seconds)
    )
    logger.info(
        f"[STARTUP] Unmute ready - Twilio configured: {settings.twilio_configured}, "
        f"OpenAI configured: {settings.openai_configured}"
    )
    yield
    # Shutdown
    eviction_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await eviction_task
    get_audio_store().clear()


app = FastAPI(
    title="Unmute",
    description="Place phone calls by typing: text is spoken on the call and replies are transcribed live",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers (must be before static file mounting to take precedence)
app.include_router(health.router, tags=["health"])
app.include_router(auth.router, tags=["auth"])
app.include_router(history.router, tags=["history"])
app.include_router(calls.router, tags=["calls"])
app.include_router(voice_webhooks.router, tags=["webhooks"])
app.include_router(audio.router, tags=["audio"])
app.include_router(realtime.router, tags=["realtime"])

# Mount static files (for frontend)
static_dir = os.path.join(os.path.dirname(__file__), "static")
if os.path.exists(static_dir):
    assets_dir = os.path.join(static_dir, "assets")
    if os.path.exists(assets_dir):
        app.mount("/assets", StaticFiles(directory=assets_dir), name="assets")


@app.get("/")
async def root():
    """Serve frontend index.html."""
    index_path = os.path.join(static_dir, "index.html")
    if os.path.exists(index_path):
        return FileResponse(index_path)
    return {
        "message": "Unmute API",
        "version": "0.1.0",
    }
