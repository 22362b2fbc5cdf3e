"""Tenant directory and federated-user provisioning."""
