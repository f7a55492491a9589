"""Execution engines: direct-API tool loop and agent runtime."""
