"""Daily index naming and rotation detection.

Pure calculation functions with no I/O or side effects.
"""

from datetime import datetime, timezone
from typing import Optional


class TargetRotation:
    """Resolves the date-bucketed index currently receiving writes.

    Index names follow "{prefix}-{YYYY}{delimiter}{MM}{delimiter}{DD}" using
    the UTC calendar date, e.g. "events-2024.03.09".
    """

    def __init__(self, prefix: str, delimiter: str = ".") -> None:
        self._prefix = prefix
        self._delimiter = delimiter

    @property
    def prefix(self) -> str:
        return self._prefix

    @property
    def delimiter(self) -> str:
        return self._delimiter

    def current_target_id(self, now: float) -> str:
        """Build the index name for a point in time.

        Args:
            now: Unix timestamp in seconds

        Returns:
            Index name for the UTC day containing now

        Example:
            >>> TargetRotation("events", ".").current_target_id(1709942400)
            'events-2024.03.09'
        """
        day = datetime.fromtimestamp(now, tz=timezone.utc)
        d = self._delimiter
        return f"{self._prefix}-{day.year:04d}{d}{day.month:02d}{d}{day.day:02d}"

    def has_rotated(self, previous_id: Optional[str], now: float) -> bool:
        """Check whether the active index differs from previous_id.

        Args:
            previous_id: Index measured during the previous cycle, or None
            now: Unix timestamp in seconds

        Returns:
            True if a previous index is known and it is not the current one
        """
        if previous_id is None:
            return False
        return previous_id != self.current_target_id(now)
