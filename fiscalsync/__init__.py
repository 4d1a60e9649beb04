"""Fiscal registration engine.

Registers receipts and cash register locations with the tax authority,
issuing an offline code (OKP) and queueing the document durably when the
authority cannot be reached, then reconciling the queue in the background.
"""

__version__ = "0.1.0"
