"""Application lifecycle wiring."""
