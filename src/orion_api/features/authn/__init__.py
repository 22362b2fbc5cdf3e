"""Local credential login and browser sessions."""
