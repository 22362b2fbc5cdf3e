"""Registered OAuth client applications."""
