"""Per-client user consent records."""
