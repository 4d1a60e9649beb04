"""Scheduler adapters that drive reconciliation of the offline store."""
