"""HTTP surface: Telegram webhook, call webhook, health and status."""
