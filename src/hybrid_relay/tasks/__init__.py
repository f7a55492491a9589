from hybrid_relay.tasks.queue import (
    CallbackResult,
    TaskQueue,
    build_callback_token,
    parse_callback_token,
)

__all__ = ["CallbackResult", "TaskQueue", "build_callback_token", "parse_callback_token"]
