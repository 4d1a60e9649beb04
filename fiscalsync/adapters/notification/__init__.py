"""Notification adapters for surfacing reconciliation outcomes.

Implementations support these output channels:
- Stdout (terminal messages for the operator)
"""
