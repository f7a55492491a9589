"""Prompt complexity classification and tier-to-model selection."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum

from hybrid_relay.config.settings import Settings

logger = logging.getLogger(__name__)


class ModelTier(str, Enum):
    CHEAP = "cheap"
    STANDARD = "standard"
    PREMIUM = "premium"


SIMPLE_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"^(hi|hey|hello|morning|good morning|gm|thanks|ok|yes|no|sure|got it)",
        r"what('s| is) (the )?(time|date|day)",
        r"^(check|show|list|get|find|search|look up)\b",
        r"^(status|how many|count)\b",
        r"unread email",
        r"calendar today",
        r"what('s| is) on my (plate|calendar|schedule)",
        r"^remind me",
    )
]

COMPLEX_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"\b(analyze|analysis|evaluate|compare|contrast)\b",
        r"\b(strategy|strategic|plan|roadmap|architecture)\b",
        r"\b(write|draft|compose) .{50,}",
        r"\b(research|investigate|deep dive)\b",
        r"\b(decide|decision|should I|pros and cons)\b",
        r"\b(explain|why|how does .{30,})\b",
        r"\b(refactor|redesign|optimize|improve)\b",
        r"\b(sponsor|partnership|brand deal|negotiate)\b",
        r"\b(content strategy|video idea|script)\b",
    )
]


@dataclass(frozen=True)
class TierSpec:
    tier: ModelTier
    model_id: str
    input_cost_per_mtok: float
    output_cost_per_mtok: float

    def cost(self, input_tokens: int, output_tokens: int) -> float:
        return (
            input_tokens * self.input_cost_per_mtok + output_tokens * self.output_cost_per_mtok
        ) / 1_000_000


@dataclass(frozen=True)
class ModelSelection:
    tier: ModelTier
    model_id: str


def classify(message: str, *, short_message_chars: int = 40) -> ModelTier:
    text = message.strip()
    if any(pattern.search(text) for pattern in COMPLEX_PATTERNS):
        return ModelTier.PREMIUM
    if any(pattern.search(text) for pattern in SIMPLE_PATTERNS):
        return ModelTier.CHEAP
    if len(text) < short_message_chars:
        return ModelTier.CHEAP
    return ModelTier.STANDARD


class ModelRouter:
    def __init__(
        self,
        tiers: dict[ModelTier, TierSpec],
        *,
        budget_floor_usd: float = 1.0,
        short_message_chars: int = 40,
    ) -> None:
        missing = set(ModelTier) - set(tiers)
        if missing:
            raise ValueError(f"Missing tier specs: {sorted(tier.value for tier in missing)}")
        self.tiers = tiers
        self.budget_floor_usd = budget_floor_usd
        self.short_message_chars = short_message_chars

    @classmethod
    def from_settings(cls, settings: Settings) -> "ModelRouter":
        return cls(
            {
                ModelTier.CHEAP: TierSpec(
                    ModelTier.CHEAP,
                    settings.cheap_model,
                    settings.cheap_input_cost,
                    settings.cheap_output_cost,
                ),
                ModelTier.STANDARD: TierSpec(
                    ModelTier.STANDARD,
                    settings.standard_model,
                    settings.standard_input_cost,
                    settings.standard_output_cost,
                ),
                ModelTier.PREMIUM: TierSpec(
                    ModelTier.PREMIUM,
                    settings.premium_model,
                    settings.premium_input_cost,
                    settings.premium_output_cost,
                ),
            },
            budget_floor_usd=settings.budget_floor_usd,
            short_message_chars=settings.short_message_chars,
        )

    def classify(self, message: str) -> ModelTier:
        return classify(message, short_message_chars=self.short_message_chars)

    def select_model(self, message: str, budget_remaining: float | None = None) -> ModelSelection:
        tier = self.classify(message)
        if (
            tier is ModelTier.PREMIUM
            and budget_remaining is not None
            and budget_remaining < self.budget_floor_usd
        ):
            logger.info(
                "model_router event=downgrade from=premium to=standard remaining=%.2f",
                budget_remaining,
            )
            tier = ModelTier.STANDARD
        return ModelSelection(tier=tier, model_id=self.tiers[tier].model_id)

    def spec_for_model(self, model_id: str) -> TierSpec | None:
        for spec in self.tiers.values():
            if spec.model_id == model_id:
                return spec
        return None
