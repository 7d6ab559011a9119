from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

import numpy as np

Coord = Tuple[int, int, int]


class ChunkState(Enum):
    UNCONFIGURED = "unconfigured"
    CONFIGURING = "configuring"
    GENERATING = "generating"
    IDLE = "idle"
    RELEASING = "releasing"
    POOLED = "pooled"
    DESTROYED = "destroyed"


@dataclass
class ChunkMesh:
    vertices: np.ndarray  # (N,3) float32, chunk-local
    normals: np.ndarray   # (N,3) float32
    indices: np.ndarray   # (3M,) uint32, CCW seen from the air side

    @classmethod
    def empty(cls) -> "ChunkMesh":
        return cls(
            vertices=np.zeros((0, 3), dtype=np.float32),
            normals=np.zeros((0, 3), dtype=np.float32),
            indices=np.zeros((0,), dtype=np.uint32),
        )

    @property
    def n_vertices(self) -> int:
        return int(self.vertices.shape[0])

    @property
    def n_triangles(self) -> int:
        return int(self.indices.shape[0] // 3)

    def append(self, vertices: np.ndarray, normals: np.ndarray, indices: np.ndarray) -> "ChunkMesh":
        """Return a new mesh with the given buffers appended; `indices` are local to `vertices`."""
        base = self.n_vertices
        return ChunkMesh(
            vertices=np.concatenate([self.vertices, vertices.astype(np.float32)], axis=0),
            normals=np.concatenate([self.normals, normals.astype(np.float32)], axis=0),
            indices=np.concatenate([self.indices, (indices.astype(np.int64) + base).astype(np.uint32)], axis=0),
        )


@dataclass(frozen=True)
class TransitionNeeds:
    """Faces whose neighbour is coarser. Order: +X, -X, +Y, -Y, +Z, -Z."""

    px: bool = False
    nx: bool = False
    py: bool = False
    ny: bool = False
    pz: bool = False
    nz: bool = False

    @property
    def any(self) -> bool:
        return self.px or self.nx or self.py or self.ny or self.pz or self.nz

    def as_tuple(self) -> tuple[bool, bool, bool, bool, bool, bool]:
        return (self.px, self.nx, self.py, self.ny, self.pz, self.nz)


@dataclass
class Chunk:
    handle: int
    coord: Optional[Coord] = None
    origin: np.ndarray = field(default_factory=lambda: np.zeros(3, dtype=np.float64))
    cells: Coord = (32, 32, 32)
    cell_size: float = 0.5
    density_sampling: int = 1
    iso_level: float = 0.0
    lod_level: int = 0
    density: object = None

    mesh: ChunkMesh = field(default_factory=ChunkMesh.empty)
    needs: TransitionNeeds = field(default_factory=TransitionNeeds)
    state: ChunkState = ChunkState.UNCONFIGURED
    active: bool = False
    pending: Optional[TransitionNeeds] = None
    generation: int = 0

    def __post_init__(self) -> None:
        self.configure(cells=self.cells, cell_size=self.cell_size, density_sampling=self.density_sampling)

    def configure(
        self,
        *,
        cells: Optional[Coord] = None,
        cell_size: Optional[float] = None,
        density_sampling: Optional[int] = None,
        iso_level: Optional[float] = None,
    ) -> None:
        # out-of-range values are clamped, never rejected
        if cells is not None:
            self.cells = (max(1, int(cells[0])), max(1, int(cells[1])), max(1, int(cells[2])))
        if cell_size is not None:
            self.cell_size = max(0.001, float(cell_size))
        if density_sampling is not None:
            self.density_sampling = max(1, int(density_sampling))
        if iso_level is not None:
            self.iso_level = float(iso_level)

    @property
    def world_size(self) -> float:
        return self.cells[0] * self.cell_size

    @property
    def grid(self) -> Coord:
        s = self.density_sampling
        return (max(1, self.cells[0] // s), max(1, self.cells[1] // s), max(1, self.cells[2] // s))

    @property
    def effective_cell_size(self) -> float:
        # n * step == world size along x
        return self.world_size / self.grid[0]

    def reset(self) -> None:
        self.coord = None
        self.origin = np.zeros(3, dtype=np.float64)
        self.lod_level = 0
        self.mesh = ChunkMesh.empty()
        self.needs = TransitionNeeds()
        self.pending = None
        self.active = False
