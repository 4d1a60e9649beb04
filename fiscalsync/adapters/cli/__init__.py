"""Command-line interface adapters.

Provides CLI commands for operating the registration engine:
- status: Report on the offline queue
- pending: List deferred submissions
- submit: Register a receipt or location from a JSON file
- validate: Check a document without submitting it
- sync: Reconcile the offline queue now
"""
