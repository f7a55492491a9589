from hybrid_relay.routing.model_router import (
    ModelRouter,
    ModelSelection,
    ModelTier,
    TierSpec,
    classify,
)

__all__ = ["ModelRouter", "ModelSelection", "ModelTier", "TierSpec", "classify"]
