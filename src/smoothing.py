"""Exponential moving average over per-window byte deltas."""

from typing import Optional


DEFAULT_ALPHA = 0.2


class DeltaSmoother:
    """EMA filter that damps single-window measurement noise.

    Smoothed values after the first sample are rounded to whole bytes.
    """

    def __init__(self) -> None:
        self._smoothed: Optional[float] = None

    @property
    def value(self) -> Optional[float]:
        """Current smoothed value, or None before the first sample."""
        return self._smoothed

    def apply(self, new_delta: float, alpha: float = DEFAULT_ALPHA) -> float:
        """Fold a new delta into the average.

        Args:
            new_delta: Byte delta observed this window
            alpha: Weight of the newest sample, between 0 and 1

        Returns:
            The updated smoothed delta. The first call returns new_delta
            unchanged.
        """
        if self._smoothed is None:
            self._smoothed = new_delta
        else:
            self._smoothed = round(alpha * new_delta + (1 - alpha) * self._smoothed)
        return self._smoothed
