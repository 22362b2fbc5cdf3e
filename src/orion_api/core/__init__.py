"""Cross-cutting building blocks: security primitives, auth pipeline, capabilities."""
