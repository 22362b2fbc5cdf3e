"""Federated sign-in through an external OpenID Connect provider."""
