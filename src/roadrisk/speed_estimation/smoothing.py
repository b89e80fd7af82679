from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass
class EmaSmoother:
    """
    Exponential moving average for scalar speed values.

    ``alpha`` is the weight of the newest value. The first update after construction
    or ``reset()`` returns the value unchanged.
    """
    alpha: float
    _value: Optional[float] = None

    @property
    def value(self) -> Optional[float]:
        return self._value

    def update(self, value: float) -> float:
        if self._value is None:
            self._value = float(value)
            return float(self._value)
        a = max(0.0, min(1.0, float(self.alpha)))
        self._value = a * float(value) + (1.0 - a) * float(self._value)
        return float(self._value)

    def reset(self) -> None:
        self._value = None
