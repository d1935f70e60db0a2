"""
Webhook surface (FastAPI).

``POST /webhook`` acknowledges every platform event with 200 and processes it
after the response is sent; ``GET /`` reports service status.
"""
from __future__ import annotations

import asyncio
import contextlib
import hmac
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.responses import JSONResponse

from .config import load_config
from .controller import BotController
from .dispatcher import ReplyDispatcher
from .extractor import ContentExtractor
from .invocation import InvocationAdapter
from .media_fetcher import MediaFetcher
from .prompts import load_prompt_templates
from .reasoning import OpenAIReasoningService
from .session_registry import SessionRegistry
from .stt import Transcriber
from .telegram_client import TelegramClient
from .turn_builder import TurnBuilder
from .utils.logging import get_logger

logger = get_logger(__name__)

APP_NAME = "Rental Disputes Agent"
SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"


def build_controller(config: Dict[str, Any]) -> BotController:
    """Wire the production components from configuration."""
    templates = load_prompt_templates(config)
    openai_client = OpenAIReasoningService.build_client(config)
    service = OpenAIReasoningService(openai_client, config["OPENAI_TEXT_MODEL"], templates.system_prompt)

    telegram = TelegramClient(
        config.get("TELEGRAM_TOKEN") or "",
        api_base=config["TELEGRAM_API_BASE"],
        download_timeout=config["MEDIA_DOWNLOAD_TIMEOUT_S"],
    )
    transcriber = Transcriber(openai_client, config["WHISPER_MODEL"])

    return BotController(
        telegram=telegram,
        registry=SessionRegistry(service, idle_timeout_s=config["SESSION_IDLE_TIMEOUT_S"]),
        fetcher=MediaFetcher(telegram, max_bytes=config["MAX_MEDIA_BYTES"]),
        extractor=ContentExtractor.from_config(config, transcriber=transcriber),
        builder=TurnBuilder(templates),
        adapter=InvocationAdapter(
            service,
            templates,
            max_retries=config["INVOKE_MAX_RETRIES"],
            attempt_timeout_s=config["TEXTGEN_TIMEOUT_SECONDS"],
            retry_delay_s=config["INVOKE_RETRY_DELAY_S"],
        ),
        dispatcher=ReplyDispatcher.from_config(telegram, config),
        templates=templates,
        streaming=config["STREAMING_ENABLE"],
    )


def create_app(config: Optional[Dict[str, Any]] = None, controller: Optional[BotController] = None) -> FastAPI:
    config = config or load_config()

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        ctrl = app.state.controller = app.state.controller or build_controller(config)
        await ctrl.telegram.start()

        if config.get("WEBHOOK_URL") and ctrl.telegram.configured:
            try:
                await ctrl.telegram.set_webhook(config["WEBHOOK_URL"], config.get("TELEGRAM_WEBHOOK_SECRET"))
            except Exception as e:
                logger.error(f"❌ Webhook registration failed: {e}", extra={"subsys": "web"})

        janitor = asyncio.create_task(ctrl.registry.run_janitor(config.get("SESSION_SWEEP_INTERVAL_S", 60.0)))
        logger.info(f"🚀 {APP_NAME} ready", extra={"subsys": "web", "event": "startup"})
        try:
            yield
        finally:
            janitor.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await janitor
            await ctrl.registry.close()
            ctrl.extractor.close()
            await ctrl.telegram.stop()
            logger.info("👋 Shutdown complete", extra={"subsys": "web", "event": "shutdown"})

    app = FastAPI(title=APP_NAME, lifespan=lifespan)
    app.state.controller = controller

    @app.post("/webhook")
    async def webhook(request: Request, background_tasks: BackgroundTasks):
        secret = config.get("TELEGRAM_WEBHOOK_SECRET")
        if secret and not hmac.compare_digest(request.headers.get(SECRET_HEADER, ""), secret):
            logger.warning("Webhook call with a bad secret token", extra={"subsys": "web", "event": "webhook.unauthorized"})
            return JSONResponse({"ok": False}, status_code=401)

        try:
            update = await request.json()
        except ValueError:
            logger.warning("Webhook body is not JSON; acknowledged and dropped", extra={"subsys": "web"})
            return {"ok": True}

        background_tasks.add_task(request.app.state.controller.handle_update, update)
        return {"ok": True}

    @app.get("/")
    async def status(request: Request):
        ctrl: BotController = request.app.state.controller
        return {
            "status": "running",
            "app": APP_NAME,
            "openaiConfigured": bool(config.get("OPENAI_API_KEY")),
            "telegramConfigured": ctrl.telegram.configured,
            "activeSessions": len(ctrl.registry),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    return app
