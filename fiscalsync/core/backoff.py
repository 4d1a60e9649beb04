"""Retry delay policy for reconciliation attempts."""

import hashlib


class BackoffPolicy:
    """Exponential, capped backoff with deterministic per-entry jitter.

    Jitter is derived from the entry key and attempt number, so registers
    that lost connectivity together do not reconnect in lockstep, yet the
    schedule of a given entry is reproducible. With ``jitter_ratio < 1``
    delays strictly increase until they reach ``max_seconds``.
    """

    def __init__(
        self,
        base_seconds: float = 1.0,
        max_seconds: float = 300.0,
        jitter_ratio: float = 0.2,
    ):
        if base_seconds <= 0:
            raise ValueError("base_seconds must be positive")
        if max_seconds < base_seconds:
            raise ValueError("max_seconds must be >= base_seconds")
        if not 0 <= jitter_ratio < 1:
            raise ValueError("jitter_ratio must be in [0, 1)")
        self.base_seconds = base_seconds
        self.max_seconds = max_seconds
        self.jitter_ratio = jitter_ratio

    def delay(self, attempt: int, key: str = "") -> float:
        """Seconds to wait after the given failed attempt (1-based)."""
        if attempt < 1:
            raise ValueError(f"attempt must be >= 1, got {attempt}")

        # Cap the exponent so huge attempt counts do not overflow floats
        raw = min(self.max_seconds, self.base_seconds * 2 ** min(attempt - 1, 62))
        digest = hashlib.sha1(f"{key}:{attempt}".encode("utf-8")).hexdigest()
        fraction = int(digest[:8], 16) / 0x100000000
        return min(self.max_seconds, raw + raw * self.jitter_ratio * fraction)
