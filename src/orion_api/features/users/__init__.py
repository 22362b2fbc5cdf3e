"""Local user accounts."""
