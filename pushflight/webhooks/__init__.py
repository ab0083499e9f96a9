"""Webhook endpoint, signature checks and payload models."""
