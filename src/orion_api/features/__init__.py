"""Feature packages exposing the Orion identity HTTP surface."""
