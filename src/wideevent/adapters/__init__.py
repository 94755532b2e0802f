"""Adapters connecting the core to storage, services and web frameworks."""
