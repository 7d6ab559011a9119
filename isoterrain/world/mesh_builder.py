from __future__ import annotations

import logging

import numpy as np

from isoterrain.util.math import normalize_rows
from isoterrain.world.chunk import Chunk, ChunkMesh
from isoterrain.world.density import MissingDensityError
from isoterrain.world.tables import CORNERS, EDGE_CORNERS, REGULAR_TRIANGLES

logger = logging.getLogger(__name__)

# Guards the interpolation denominator; crossings are approximate, not exact roots.
EPSILON = 1e-8
# Gradient step as a fraction of the cell size when the field does not pick one.
DEFAULT_GRADIENT_FRACTION = 0.1

_CORNERS = np.array(CORNERS, dtype=np.int64)
_EDGE_CORNERS = np.array(EDGE_CORNERS, dtype=np.int64)


def sample_points(density, x: np.ndarray, y: np.ndarray, z: np.ndarray) -> np.ndarray:
    """Sample the density at every point of equally shaped coordinate arrays."""
    if hasattr(density, "sample_grid"):
        d = np.asarray(density.sample_grid(x, y, z), dtype=np.float64)
        return np.broadcast_to(d, np.shape(x)).copy()
    out = np.zeros(np.shape(x), dtype=np.float64)
    for idx in np.ndindex(out.shape):
        out[idx] = float(density.sample(float(x[idx]), float(y[idx]), float(z[idx])))
    return out


def gradient_step(density, cell_size: float) -> float:
    if hasattr(density, "gradient_step"):
        return float(density.gradient_step(cell_size))
    return DEFAULT_GRADIENT_FRACTION * cell_size


def estimate_normals(density, points: np.ndarray, step: float) -> np.ndarray:
    """Negated central-difference gradient at world `points` (N,3), normalised.

    A vanishing gradient has no direction; those vertices get a zero normal.
    """
    n = points.shape[0]
    if n == 0:
        return np.zeros((0, 3), dtype=np.float32)
    offsets = np.eye(3, dtype=np.float64) * step
    probes = np.concatenate([points + offsets[a] for a in range(3)] + [points - offsets[a] for a in range(3)], axis=0)
    d = sample_points(density, probes[:, 0], probes[:, 1], probes[:, 2]).reshape(6, n)
    grad = (d[:3] - d[3:]).T / (2.0 * step)
    return normalize_rows(-grad).astype(np.float32)


def interpolate_crossings(pa: np.ndarray, pb: np.ndarray, da: np.ndarray, db: np.ndarray) -> np.ndarray:
    """Linear zero crossing along each segment pa->pb, clamped to the segment."""
    t = np.clip(da / (da - db + EPSILON), 0.0, 1.0)
    return pa + (pb - pa) * t[:, None]


def sample_lattice(chunk: Chunk, density) -> np.ndarray:
    """Signed samples (density - iso) at every lattice point, shape (nz+1, ny+1, nx+1)."""
    nx, ny, nz = chunk.grid
    step = chunk.effective_cell_size
    ox, oy, oz = (float(c) for c in chunk.origin)
    xs = ox + np.arange(nx + 1, dtype=np.float64) * step
    ys = oy + np.arange(ny + 1, dtype=np.float64) * step
    zs = oz + np.arange(nz + 1, dtype=np.float64) * step
    grid_z, grid_y, grid_x = np.meshgrid(zs, ys, xs, indexing="ij")
    return sample_points(density, grid_x, grid_y, grid_z) - chunk.iso_level


def case_indices(samples: np.ndarray) -> np.ndarray:
    """8-bit cube case per cell; bit i set iff corner i is solid."""
    nz, ny, nx = (s - 1 for s in samples.shape)
    case = np.zeros((nz, ny, nx), dtype=np.int32)
    for i, (cx, cy, cz) in enumerate(CORNERS):
        corner = samples[cz:cz + nz, cy:cy + ny, cx:cx + nx]
        case |= (corner < 0.0).astype(np.int32) << i
    return case


def build_regular_mesh(chunk: Chunk, density) -> ChunkMesh:
    """Marching Cubes over the chunk lattice.

    Vertices are chunk-local and never welded: every edge use emits its own
    vertex. Triangles wind counter-clockwise seen from the air side.
    """
    if density is None:
        raise MissingDensityError(f"chunk {chunk.coord} has no density field")

    nx, ny, nz = chunk.grid
    step = chunk.effective_cell_size
    logger.debug(
        f"chunk {chunk.coord}: cells={chunk.cells} sampling={chunk.density_sampling} "
        f"grid=({nx},{ny},{nz}) cell={step:.4f}"
    )

    samples = sample_lattice(chunk, density)
    case = case_indices(samples)
    cz, cy, cx = np.nonzero((case != 0) & (case != 255))
    if cz.size == 0:
        return ChunkMesh.empty()

    cell_ids: list[int] = []
    edge_ids: list[int] = []
    for k, ci in enumerate(case[cz, cy, cx].tolist()):
        tri = REGULAR_TRIANGLES[ci]
        for t in range(0, len(tri), 3):
            # table triplets face the solid; swap two to face the air
            cell_ids.extend((k, k, k))
            edge_ids.extend((tri[t], tri[t + 2], tri[t + 1]))

    cells = np.stack([cx, cy, cz], axis=1)[np.array(cell_ids, dtype=np.int64)]
    ends = _EDGE_CORNERS[np.array(edge_ids, dtype=np.int64)]
    ia = cells + _CORNERS[ends[:, 0]]
    ib = cells + _CORNERS[ends[:, 1]]
    da = samples[ia[:, 2], ia[:, 1], ia[:, 0]]
    db = samples[ib[:, 2], ib[:, 1], ib[:, 0]]

    local = interpolate_crossings(ia * step, ib * step, da, db)
    normals = estimate_normals(density, local + chunk.origin, gradient_step(density, step))

    return ChunkMesh(
        vertices=local.astype(np.float32),
        normals=normals,
        indices=np.arange(local.shape[0], dtype=np.uint32),
    )
