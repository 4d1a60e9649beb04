"""Test suite for the fiscal registration engine.

Organized into three categories:

1. core/: Unit tests for core domain logic
   - No I/O, fast execution
   - Uses in-memory fakes for ports

2. adapters/: Integration tests for adapter implementations
   - SQLite against temporary directories, HTTP against httpx.MockTransport
   - Validates adapter behavior and error translation

3. fakes/: Port implementations for testing
   - In-memory implementations of TransportPort, OfflineStorePort, etc.
   - Used by core unit tests and scheduler tests
"""
