"""Fake/mock implementations of core ports for testing.

These in-memory implementations allow core domain logic to be tested
without external dependencies:

- FakeTransportPort: Scripted authority answers and failures
- FakeOfflineStorePort: In-memory offline queue with reconciliation ledger
- FakeOutcomeObserverPort: Captured reconciliation outcomes for assertion
"""

from .observer import FakeOutcomeObserverPort
from .store import FakeOfflineStorePort
from .transport import FakeTransportPort

__all__ = [
    "FakeOfflineStorePort",
    "FakeOutcomeObserverPort",
    "FakeTransportPort",
]
