"""Offline store adapters for deferred submissions."""
