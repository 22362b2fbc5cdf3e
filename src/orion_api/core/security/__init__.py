"""Security primitives: hashing, opaque tokens, encryption at rest, PKCE."""
