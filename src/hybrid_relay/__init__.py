"""Chat-to-LLM relay with local/VPS failover and resumable tasks."""

__version__ = "0.1.0"
