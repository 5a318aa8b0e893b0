"""Fixed-size sample window."""

from collections import deque
from collections.abc import Iterator


class RollingWindow:
    """FIFO of the most recent numeric samples with an on-demand mean."""

    def __init__(self, capacity: int = 10) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._samples: deque[float] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._samples.maxlen or 0

    def push(self, value: float) -> None:
        """Append a sample, evicting the oldest one once full."""
        self._samples.append(float(value))

    def average(self) -> float | None:
        """Mean of the current contents, or None when empty."""
        if not self._samples:
            return None
        return sum(self._samples) / len(self._samples)

    def clear(self) -> None:
        self._samples.clear()

    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self) -> Iterator[float]:
        return iter(self._samples)
