"""Shared helpers for the Orion API (logging, errors, responses, middleware)."""
