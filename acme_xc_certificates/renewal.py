"""
Renewal decisions and the certificate state they are based on.
"""

import json
import logging
import os
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_RENEWAL_DAYS = 30


def should_issue(not_after: datetime | None, threshold_days: float, now: datetime | None = None) -> bool:
    """
    Decide whether a certificate needs to be (re)issued.

    Args:
        not_after: Expiry of the current certificate, or None if there is none.
        threshold_days: Renew when fewer days than this remain.
        now: Reference time; defaults to the current UTC time.

    Returns:
        bool: True if there is no certificate or it expires within the threshold.
    """
    if not_after is None:
        return True

    if now is None:
        now = datetime.now(timezone.utc)
    if not_after.tzinfo is None:
        not_after = not_after.replace(tzinfo=timezone.utc)

    return not_after - now < timedelta(days=threshold_days)


class JsonStateStore:
    """
    Identity key -> not_after, kept in a JSON file.

    The file holds ISO-8601 timestamps: ``{"certificates": {"ns/name": "2026-01-01T00:00:00+00:00"}}``.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text())
        except ValueError as e:
            raise ValueError(f"State file {self.path} is not valid JSON: {e}") from e
        return dict(data.get("certificates", {}))

    def get(self, key: str) -> datetime | None:
        """Return the recorded expiry for key, or None if unknown."""
        with self._lock:
            value = self._load().get(key)
        if not value:
            return None
        return datetime.fromisoformat(value)

    def put(self, key: str, not_after: datetime) -> None:
        """Record the expiry of a newly delivered certificate."""
        with self._lock:
            certificates = self._load()
            certificates[key] = not_after.isoformat()

            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_name(self.path.name + ".tmp")
            tmp_path.write_text(json.dumps({"certificates": certificates}, indent=2, sort_keys=True) + "\n")
            os.replace(tmp_path, self.path)

        logger.debug(f"Recorded {key} not_after={not_after.isoformat()} in {self.path}")

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._load())
