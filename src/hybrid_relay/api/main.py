"""FastAPI app entrypoint for hybrid-relay."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Callable

from fastapi import BackgroundTasks, FastAPI, Header, HTTPException, Request

from hybrid_relay.api.schemas import CallWebhook, TelegramMessage, TelegramUpdate
from hybrid_relay.config.logging import configure_logging
from hybrid_relay.config.settings import Settings, get_settings
from hybrid_relay.engine.agent_runtime import AgentRuntimeEngine
from hybrid_relay.engine.budget import DailyBudget
from hybrid_relay.engine.direct import DirectApiEngine
from hybrid_relay.engine.llm import AnthropicMessagesClient, LLMClient
from hybrid_relay.gateway.calls import CallTracker
from hybrid_relay.gateway.controller import ControllerConfig, GatewayController, InboundMessage
from hybrid_relay.gateway.local_node import LocalNodeClient
from hybrid_relay.gateway.media import ImageDescriber, InboundMedia, Transcriber
from hybrid_relay.gateway.messaging import MessagingGateway, TelegramGateway
from hybrid_relay.health.monitor import HealthMonitor, LivenessCheck, LivenessProbe
from hybrid_relay.routing.model_router import ModelRouter
from hybrid_relay.storage.base import RelayStore
from hybrid_relay.storage.disabled import DisabledRelayStore
from hybrid_relay.storage.postgres import PostgresRelayStore
from hybrid_relay.tasks.queue import TaskQueue
from hybrid_relay.tools.builtin import ToolContext
from hybrid_relay.tools.gateway import ToolExecutor
from hybrid_relay.tools.registry import build_registry
from hybrid_relay.tools.voice import VoiceService

logger = logging.getLogger(__name__)

COMPLETED_CALL_STATUSES = frozenset({"done", "completed"})


@dataclass(frozen=True)
class RuntimeOverrides:
    """Collaborators injected by tests instead of the production clients."""

    store: RelayStore | None = None
    messaging: MessagingGateway | None = None
    llm_client: LLMClient | None = None
    agent_client_factory: Callable[..., Any] | None = None
    local_node: LocalNodeClient | None = None
    voice: VoiceService | None = None
    liveness_check: LivenessCheck | None = None
    transcriber: Transcriber | None = None
    image_describer: ImageDescriber | None = None


def build_controller(settings: Settings, overrides: RuntimeOverrides) -> GatewayController:
    messaging = overrides.messaging
    if messaging is None:
        if not settings.telegram_bot_token:
            raise RuntimeError(
                "Missing Telegram bot token. Set HYBRID_RELAY_TELEGRAM_BOT_TOKEN "
                "before starting the app."
            )
        messaging = TelegramGateway(
            settings.telegram_bot_token, api_base=settings.telegram_api_base
        )

    api_key = settings.resolved_anthropic_api_key()
    llm_client = overrides.llm_client
    if llm_client is None:
        if not api_key:
            raise RuntimeError(
                "Missing Anthropic API key. Set HYBRID_RELAY_ANTHROPIC_API_KEY "
                "or ANTHROPIC_API_KEY before starting the app."
            )
        llm_client = AnthropicMessagesClient(api_key=api_key)

    store = overrides.store
    if store is None:
        database_url = settings.resolved_database_url()
        if database_url:
            store = PostgresRelayStore(database_url)
        else:
            logger.warning("store event=disabled reason=no_database_url persistence=off")
            store = DisabledRelayStore()

    router = ModelRouter.from_settings(settings)
    budget = DailyBudget(settings.daily_budget_usd, timezone=settings.user_timezone)
    registry = build_registry(
        ToolContext(store=store, timezone=settings.user_timezone, voice=overrides.voice)
    )
    executor = ToolExecutor(
        registry=registry,
        tool_timeout_s=settings.tool_timeout_s,
        max_retries=settings.tool_max_retries,
    )
    direct_engine = DirectApiEngine(
        llm_client=llm_client,
        executor=executor,
        store=store,
        router=router,
        budget=budget,
        max_iterations=settings.max_iterations,
        max_tokens=settings.max_tokens,
        text_block_limit=settings.text_block_limit,
        tool_result_limit=settings.tool_result_limit,
        context_message_limit=settings.context_message_limit,
        bot_name=settings.bot_name,
        user_name=settings.user_name,
        timezone=settings.user_timezone,
    )

    agent_engine = None
    if settings.use_agent_runtime:
        agent_kwargs: dict[str, Any] = {}
        if overrides.agent_client_factory is not None:
            agent_kwargs["client_factory"] = overrides.agent_client_factory
        agent_engine = AgentRuntimeEngine(
            store=store,
            budget=budget,
            max_iterations=settings.max_iterations,
            max_run_budget_usd=settings.max_run_budget_usd,
            context_message_limit=settings.context_message_limit,
            user_name=settings.user_name,
            timezone=settings.user_timezone,
            cwd=settings.agent_runtime_cwd or None,
            api_key=api_key,
            **agent_kwargs,
        )

    liveness_check = overrides.liveness_check or LivenessProbe(
        store=store,
        node_id=settings.local_node_id,
        health_url=settings.local_health_url,
        timeout_s=settings.health_timeout_s,
        heartbeat_max_age_s=settings.heartbeat_max_age_s,
    )
    monitor = HealthMonitor(
        liveness_check,
        interval_s=settings.health_check_interval_s,
        failures_until_down=settings.failures_until_down,
    )
    local_node = overrides.local_node or LocalNodeClient(
        settings.local_process_url,
        settings.gateway_secret,
        timeout_s=settings.local_forward_timeout_s,
    )

    return GatewayController(
        config=ControllerConfig(
            node_id=settings.node_id,
            local_node_id=settings.local_node_id,
            bot_name=settings.bot_name,
            user_timezone=settings.user_timezone,
            engine_timeout_s=settings.engine_timeout_s,
            use_agent_runtime=settings.use_agent_runtime,
            heartbeat_interval_s=settings.heartbeat_interval_s,
            stale_task_scan_interval_s=settings.stale_task_scan_interval_s,
        ),
        store=store,
        messaging=messaging,
        monitor=monitor,
        router=router,
        budget=budget,
        task_queue=TaskQueue(store, messaging, stale_threshold_s=settings.stale_task_threshold_s),
        direct_engine=direct_engine,
        agent_engine=agent_engine,
        local_node=local_node,
        call_tracker=CallTracker(
            poll_interval_s=settings.call_poll_interval_s,
            max_attempts=settings.call_poll_max_attempts,
        ),
        voice=overrides.voice,
        transcriber=overrides.transcriber,
        image_describer=overrides.image_describer,
    )


def _ensure_runtime_state(app: FastAPI, *, settings: Settings, overrides: RuntimeOverrides) -> None:
    if not hasattr(app.state, "controller"):
        app.state.controller = build_controller(settings, overrides)

    if not hasattr(app.state, "settings"):
        app.state.settings = settings


def create_app(
    *,
    store: RelayStore | None = None,
    settings_override: Settings | None = None,
    messaging: MessagingGateway | None = None,
    llm_client: LLMClient | None = None,
    agent_client_factory: Callable[..., Any] | None = None,
    local_node: LocalNodeClient | None = None,
    voice: VoiceService | None = None,
    liveness_check: LivenessCheck | None = None,
    transcriber: Transcriber | None = None,
    image_describer: ImageDescriber | None = None,
) -> FastAPI:
    settings = settings_override or get_settings()
    configure_logging(settings.log_level)
    overrides = RuntimeOverrides(
        store=store,
        messaging=messaging,
        llm_client=llm_client,
        agent_client_factory=agent_client_factory,
        local_node=local_node,
        voice=voice,
        liveness_check=liveness_check,
        transcriber=transcriber,
        image_describer=image_describer,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _ensure_runtime_state(app, settings=settings, overrides=overrides)
        await app.state.controller.start()
        try:
            yield
        finally:
            await app.state.controller.stop()

    app_lifespan = lifespan if store is None else None
    app = FastAPI(title=settings.app_name, lifespan=app_lifespan)

    # Keep test paths reliable when lifespan is not executed by the client.
    if store is not None:
        _ensure_runtime_state(app, settings=settings, overrides=overrides)

    def _get_controller(request: Request) -> GatewayController:
        if not hasattr(request.app.state, "controller"):
            _ensure_runtime_state(request.app, settings=settings, overrides=overrides)
        return request.app.state.controller

    def _is_allowed(user_id: int | None) -> bool:
        if not settings.telegram_allowed_user_id:
            return True
        return user_id is not None and str(user_id) == settings.telegram_allowed_user_id

    @app.get("/health")
    def health(request: Request) -> dict[str, Any]:
        controller = _get_controller(request)
        now = datetime.now(UTC)
        return {
            "status": "ok",
            "service": settings.app_name,
            "node": settings.node_id,
            "local_alive": controller.monitor.is_alive(),
            "uptime": round((now - controller.started_at).total_seconds(), 1),
            "timestamp": now.isoformat(),
        }

    @app.get("/status")
    def status(request: Request) -> dict[str, Any]:
        controller = _get_controller(request)
        return {"status": "ok", "service": settings.app_name, **controller.status_snapshot()}

    @app.post("/telegram")
    async def telegram_webhook(
        update: TelegramUpdate,
        request: Request,
        background_tasks: BackgroundTasks,
        x_telegram_bot_api_secret_token: str | None = Header(default=None),
    ) -> dict[str, bool]:
        if settings.gateway_secret and x_telegram_bot_api_secret_token != settings.gateway_secret:
            raise HTTPException(status_code=401, detail="Invalid webhook secret")
        controller = _get_controller(request)

        callback = update.callback_query
        if callback is not None:
            if not _is_allowed(callback.from_user.id):
                logger.info("telegram event=ignored reason=user user_id=%s", callback.from_user.id)
                return {"ok": True}
            background_tasks.add_task(controller.messaging.acknowledge_callback, callback.id)
            if callback.data and callback.message is not None:
                background_tasks.add_task(
                    controller.handle_callback,
                    callback.data,
                    str(callback.message.chat.id),
                    callback.message.message_id,
                )
            return {"ok": True}

        message = update.message
        if message is None:
            return {"ok": True}
        user_id = message.from_user.id if message.from_user else None
        if not _is_allowed(user_id):
            logger.info("telegram event=ignored reason=user user_id=%s", user_id)
            return {"ok": True}
        if not message.text:
            background_tasks.add_task(controller.handle_media, _media_from(message))
            return {"ok": True}

        background_tasks.add_task(
            controller.handle_message,
            InboundMessage(
                chat_id=str(message.chat.id),
                text=message.text,
                thread_id=message.message_thread_id,
            ),
        )
        return {"ok": True}

    @app.post("/webhook/call")
    async def call_webhook(
        payload: CallWebhook,
        request: Request,
        background_tasks: BackgroundTasks,
    ) -> dict[str, Any]:
        controller = _get_controller(request)
        if payload.status.lower() not in COMPLETED_CALL_STATUSES:
            return {"ok": True, "processed": False}
        transcript = payload.transcript_text()
        if not transcript:
            return {"ok": True, "processed": False}
        if controller.call_tracker.is_processed(payload.conversation_id):
            return {"ok": True, "processed": False, "duplicate": True}

        chat_id = payload.chat_id or settings.telegram_allowed_user_id
        if not chat_id:
            raise HTTPException(status_code=422, detail="No chat to deliver the call summary to")
        background_tasks.add_task(
            controller.handle_call_transcript, payload.conversation_id, chat_id, transcript
        )
        return {"ok": True, "processed": True}

    return app


def _media_from(message: TelegramMessage) -> InboundMedia:
    chat_id = str(message.chat.id)
    voice = message.voice or message.audio
    if voice is not None:
        return InboundMedia(
            chat_id, "voice", voice.file_id, thread_id=message.message_thread_id
        )
    if message.photo:
        # Telegram lists photo sizes smallest first.
        return InboundMedia(
            chat_id,
            "image",
            message.photo[-1].file_id,
            caption=message.caption,
            thread_id=message.message_thread_id,
        )
    return InboundMedia(chat_id, "other", thread_id=message.message_thread_id)


app = create_app()
