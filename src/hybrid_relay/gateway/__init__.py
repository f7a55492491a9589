"""Messaging, local-node forwarding, call tracking and the gateway controller."""
