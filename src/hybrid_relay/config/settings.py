"""Application settings."""

from functools import lru_cache
import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[3]


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    app_name: str = "hybrid-relay"
    app_env: str = "dev"
    log_level: str = "INFO"

    node_id: str = "vps"
    local_node_id: str = "local"
    local_health_url: str = ""
    local_process_url: str = ""
    gateway_secret: str = ""

    telegram_bot_token: str = ""
    telegram_allowed_user_id: str = ""
    telegram_api_base: str = "https://api.telegram.org"

    database_url: str = ""
    anthropic_api_key: str = ""
    use_agent_runtime: bool = False
    agent_runtime_cwd: str = ""

    health_check_interval_s: float = Field(default=30.0, gt=0.0)
    health_timeout_s: float = Field(default=5.0, gt=0.0)
    failures_until_down: int = Field(default=2, ge=1)
    heartbeat_max_age_s: float = Field(default=90.0, gt=0.0)
    heartbeat_interval_s: float = Field(default=30.0, gt=0.0)
    local_forward_timeout_s: float = Field(default=10.0, gt=0.0)
    engine_timeout_s: float = Field(default=300.0, gt=0.0)
    stale_task_threshold_s: float = Field(default=7200.0, gt=0.0)
    stale_task_scan_interval_s: float = Field(default=900.0, gt=0.0)
    call_poll_interval_s: float = Field(default=10.0, gt=0.0)
    call_poll_max_attempts: int = Field(default=90, ge=1)

    max_iterations: int = Field(default=15, ge=1)
    max_tokens: int = Field(default=4096, ge=1)
    text_block_limit: int = Field(default=2000, ge=1)
    tool_result_limit: int = Field(default=500, ge=1)
    context_message_limit: int = Field(default=10, ge=0)
    short_message_chars: int = Field(default=40, ge=0)
    tool_timeout_s: float = Field(default=10.0, ge=0.01)
    tool_max_retries: int = Field(default=0, ge=0)

    daily_budget_usd: float = Field(default=5.0, ge=0.0)
    budget_floor_usd: float = Field(default=1.0, ge=0.0)
    max_run_budget_usd: float = Field(default=2.0, gt=0.0)

    cheap_model: str = "claude-haiku-4-5-20251001"
    cheap_input_cost: float = 0.8
    cheap_output_cost: float = 4.0
    standard_model: str = "claude-sonnet-4-5-20250929"
    standard_input_cost: float = 3.0
    standard_output_cost: float = 15.0
    premium_model: str = "claude-opus-4-6"
    premium_input_cost: float = 15.0
    premium_output_cost: float = 75.0

    bot_name: str = "Relay"
    user_name: str = "there"
    user_timezone: str = "UTC"

    model_config = SettingsConfigDict(
        env_prefix="HYBRID_RELAY_",
        extra="ignore",
        env_file=(PROJECT_ROOT / ".env", PROJECT_ROOT / ".env.local"),
        env_file_encoding="utf-8",
    )

    def resolved_database_url(self) -> str:
        return self.database_url or os.getenv("DATABASE_URL", "")

    def resolved_anthropic_api_key(self) -> str:
        return self.anthropic_api_key or os.getenv("ANTHROPIC_API_KEY", "")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
