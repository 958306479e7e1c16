"""HTTP API for the webhook service."""
