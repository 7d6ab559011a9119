from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple, Union

# App
APP_VERSION = "0.4.0"

# Grid & space
CELLS_PER_CHUNK = (32, 32, 32)
CELL_SIZE = 0.5  # chunk world size = CELLS_PER_CHUNK[0] * CELL_SIZE
ISO_LEVEL = 0.0
DENSITY_SAMPLING = 1  # 1 = full resolution, higher = lower poly
VIEW_RADIUS = (2, 1, 2)  # chunks per axis around the target; an int r means (r, r // 3, r)

# Level of detail
# Each level halves the effective resolution so neighbouring levels meet 2:1.
LOD_DISTANCES = (6.0, 12.0, 24.0, 48.0)
LOD_SAMPLINGS = (1, 1, 1, 2)
LOD_CELL_COUNTS = (
    (32, 32, 32),  # LOD 0: full detail (target chunk)
    (16, 16, 16),  # LOD 1
    (8, 8, 8),     # LOD 2
    (8, 8, 8),     # LOD 3: sampled every 2nd cell
)
USE_ADAPTIVE_LOD = True
LOD_UPDATE_INTERVAL = 0.5  # seconds between LOD re-evaluations
LOD_HYSTERESIS = 0.1  # fraction of a threshold

# Pooling
POOL_PREWARM = 16
MAX_POOL_SIZE = 256

# Headless run (CLI)
DEFAULT_SEED = 1337
DEFAULT_NOISE = "fast"
DEFAULT_FIELD = "terrain"
DEFAULT_SPEED = 4.0  # world units / sec along +Z
DEFAULT_DURATION = 10.0  # simulated seconds
DEFAULT_TICK_RATE = 30  # ticks per simulated second
DEFAULT_HEIGHT_OFFSET = 6.0
HEIGHT_SMOOTH_K = 4.0  # larger = faster follow

_MIN_CELL_SIZE = 1e-4

Cells = Tuple[int, int, int]


def _cells(v) -> Cells:
    x, y, z = v
    return (max(1, int(x)), max(1, int(y)), max(1, int(z)))


@dataclass
class WorldConfig:
    cells_per_chunk: Cells = CELLS_PER_CHUNK
    cell_size: float = CELL_SIZE
    iso_level: float = ISO_LEVEL
    density_sampling: int = DENSITY_SAMPLING
    view_radius: Union[int, Cells] = VIEW_RADIUS

    lod_distances: Tuple[float, ...] = LOD_DISTANCES
    lod_samplings: Tuple[int, ...] = LOD_SAMPLINGS
    lod_cell_counts: Tuple[Cells, ...] = LOD_CELL_COUNTS
    use_adaptive_lod: bool = USE_ADAPTIVE_LOD
    lod_update_interval: float = LOD_UPDATE_INTERVAL
    lod_hysteresis: float = LOD_HYSTERESIS

    pool_prewarm: int = POOL_PREWARM
    max_pool_size: int = MAX_POOL_SIZE

    def __post_init__(self) -> None:
        # Lenient: out-of-range values are clamped to the nearest valid one.
        self.cells_per_chunk = _cells(self.cells_per_chunk)
        self.cell_size = max(_MIN_CELL_SIZE, float(self.cell_size))
        self.iso_level = float(self.iso_level)
        self.density_sampling = max(1, int(self.density_sampling))

        if isinstance(self.view_radius, int):
            r = max(0, self.view_radius)
            self.view_radius = (r, r // 3, r)
        else:
            self.view_radius = tuple(max(0, int(r)) for r in self.view_radius)

        distances = []
        for d in self.lod_distances:
            d = max(0.0, float(d))
            distances.append(max(d, distances[-1]) if distances else d)
        self.lod_distances = tuple(distances)
        self.lod_samplings = tuple(max(1, int(s)) for s in self.lod_samplings) or (self.density_sampling,)
        self.lod_cell_counts = tuple(_cells(c) for c in self.lod_cell_counts)
        self.lod_update_interval = max(0.0, float(self.lod_update_interval))
        self.lod_hysteresis = min(max(0.0, float(self.lod_hysteresis)), 0.5)

        self.max_pool_size = max(0, int(self.max_pool_size))
        self.pool_prewarm = min(max(0, int(self.pool_prewarm)), self.max_pool_size)

    @property
    def chunk_world_size(self) -> float:
        return self.cells_per_chunk[0] * self.cell_size

    @property
    def lod_count(self) -> int:
        return len(self.lod_samplings)
