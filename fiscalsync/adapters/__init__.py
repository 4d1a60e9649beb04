"""External adapters for the fiscal registration engine.

This package contains all external dependencies (HTTP, SQLite, asyncio
process control, terminal output) and provides implementations of the
core port interfaces.

Adapter Organization:

- transport/: Adapters for talking to the tax authority (HTTP)
- store/: Adapters for durable offline queues (SQLite)
- scheduler/: Adapters for driving background reconciliation (daemon)
- notification/: Adapters for reporting reconciliation outcomes (stdout)
- cli/: Command-line interface and management commands
"""
