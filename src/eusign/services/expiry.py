"""Staleness policy shared by the certificate and configuration caches.

The caches never refresh themselves. They only answer whether an
artifact is older than the configured time-to-live; re-fetching stale
material is the caller's decision.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path

# Certificates downloaded from an issuer are re-fetched daily by default
DEFAULT_TTL = timedelta(days=1)


@dataclass(frozen=True, slots=True)
class ExpiryPolicy:
    """Time-to-live predicate for cached artifacts.

    Attributes:
        ttl: Maximum artifact age. A zero ttl marks everything stale.
    """

    ttl: timedelta = DEFAULT_TTL

    def __post_init__(self) -> None:
        if self.ttl < timedelta(0):
            msg = f"Expiry ttl must not be negative: {self.ttl}"
            raise ValueError(msg)

    def is_expired(self, created_at: datetime | None, now: datetime | None = None) -> bool:
        """Check whether an artifact created at `created_at` is stale.

        Args:
            created_at: Artifact creation time (timezone-aware). None means
                the artifact does not exist and is always stale.
            now: Reference time, defaults to the current UTC time.

        Returns:
            True if the artifact must be re-fetched.
        """
        if created_at is None:
            return True
        now = now or datetime.now(UTC)
        return now - created_at >= self.ttl

    def is_path_expired(self, path: Path, now: datetime | None = None) -> bool:
        """Check staleness of a file using its modification time."""
        try:
            mtime = path.stat().st_mtime
        except FileNotFoundError:
            return True
        return self.is_expired(datetime.fromtimestamp(mtime, UTC), now)
