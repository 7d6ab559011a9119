from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

Cells = Tuple[int, int, int]

# Fraction of a threshold by which a chunk's current level stretches.
DEFAULT_HYSTERESIS = 0.1


@dataclass(frozen=True)
class LODProfile:
    """Distance thresholds with a parallel sampling stride and cell-count per level."""

    distances: Tuple[float, ...]
    samplings: Tuple[int, ...]
    cell_counts: Tuple[Cells, ...] = ()
    hysteresis: float = DEFAULT_HYSTERESIS

    @classmethod
    def from_config(cls, config) -> "LODProfile":
        return cls(
            distances=tuple(config.lod_distances),
            samplings=tuple(config.lod_samplings),
            cell_counts=tuple(config.lod_cell_counts),
            hysteresis=float(config.lod_hysteresis),
        )

    @property
    def count(self) -> int:
        return max(1, len(self.samplings))

    def clamp(self, level: int) -> int:
        return min(max(0, int(level)), self.count - 1)

    def _band(self, current: int) -> tuple[float, float]:
        lo = float("-inf")
        hi = float("inf")
        if 0 < current <= len(self.distances):
            lo = self.distances[current - 1] * (1.0 - self.hysteresis)
        if current < len(self.distances):
            hi = self.distances[current] * (1.0 + self.hysteresis)
        return lo, hi

    def level_for_distance(self, distance: float, current: Optional[int] = None) -> int:
        """Smallest level whose threshold covers `distance`.

        A chunk keeps its `current` level while the distance stays within that
        level's thresholds widened by the hysteresis band on both sides.
        """
        if current is not None:
            current = self.clamp(current)
            lo, hi = self._band(current)
            if lo < distance <= hi:
                return current
        for i, threshold in enumerate(self.distances):
            if distance <= threshold:
                return self.clamp(i)
        return self.clamp(len(self.distances))

    def sampling(self, level: int) -> int:
        return max(1, int(self.samplings[self.clamp(level)])) if self.samplings else 1

    def cells(self, level: int) -> Optional[Cells]:
        level = self.clamp(level)
        if level < len(self.cell_counts):
            return self.cell_counts[level]
        return None
