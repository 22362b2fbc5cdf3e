"""Signing key lifecycle, JWKS and discovery."""
