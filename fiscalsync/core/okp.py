"""Offline registration code (OKP) generation.

An OKP stands in for the authority's identifier while a document waits
in the offline store. It is derived from the cash register code, the
register's durable offline sequence, the issue time and the payload
digest, so the same inputs always give the same code and two different
deferrals of one register can never collide.
"""

import hashlib
from datetime import datetime


class OkpGenerator:
    """Produces deterministic offline codes.

    Pure function over its inputs.
    All methods are static as the class carries no state.
    """

    GROUPS = 5
    GROUP_WIDTH = 8

    @staticmethod
    def generate(
        cash_register_code: str,
        sequence: int,
        issued_at: datetime,
        payload_digest: str,
    ) -> str:
        """Create the OKP for one deferred submission.

        Rendered as five dash-separated groups of eight hex digits.
        """
        if sequence < 1:
            raise ValueError(f"sequence must be >= 1, got {sequence}")

        components = [
            cash_register_code,
            str(sequence),
            issued_at.isoformat(),
            payload_digest,
        ]
        digest = hashlib.sha1("|".join(components).encode()).hexdigest()
        return OkpGenerator.format(digest)

    @staticmethod
    def format(hex_digest: str) -> str:
        """Split a 40-digit hex digest into the OKP group layout."""
        width = OkpGenerator.GROUP_WIDTH
        groups = [
            hex_digest[i : i + width]
            for i in range(0, OkpGenerator.GROUPS * width, width)
        ]
        return "-".join(groups).upper()
