from hybrid_relay.memory.intents import IntentSummary, process_intents, strip_intent_tags

__all__ = ["IntentSummary", "process_intents", "strip_intent_tags"]
