"""Shared helpers for Orion identity services."""
