from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from isoterrain.world.chunk import Chunk, ChunkMesh, TransitionNeeds
from isoterrain.world.density import MissingDensityError
from isoterrain.world.mesh_builder import estimate_normals, gradient_step, interpolate_crossings, sample_points
from isoterrain.world.tables import (
    TRANSITION_CELL_CLASS,
    TRANSITION_CELL_DATA,
    TRANSITION_CLASS_MASK,
    TRANSITION_COARSE_CORNERS,
    TRANSITION_FLIP,
    TRANSITION_POINTS,
    TRANSITION_VERTEX_DATA,
    unpack_edge,
)

logger = logging.getLogger(__name__)

# Distance of the coarse stencil layer outside the chunk, in fine cells.
TRANSITION_WIDTH = 0.5

_STENCIL = np.array(TRANSITION_POINTS, dtype=np.float64)
_COARSE_SOURCES = np.array(TRANSITION_COARSE_CORNERS, dtype=np.int64)


@dataclass(frozen=True)
class Face:
    """A chunk face with a right-handed (u, v, outward normal) frame."""

    name: str
    axis: int
    sign: int
    u: int
    v: int


# Same order as TransitionNeeds fields.
FACES = (
    Face("px", 0, 1, 1, 2),
    Face("nx", 0, -1, 2, 1),
    Face("py", 1, 1, 2, 0),
    Face("ny", 1, -1, 0, 2),
    Face("pz", 2, 1, 0, 1),
    Face("nz", 2, -1, 1, 0),
)


def flagged_faces(needs: TransitionNeeds) -> list[Face]:
    return [face for face, flag in zip(FACES, needs.as_tuple()) if flag]


def stencil_positions(chunk: Chunk, face: Face) -> np.ndarray:
    """Chunk-local positions of every 13-point stencil on `face`, shape (blocks, 13, 3).

    Blocks cover 2x2 fine cells and are laid out v-major; a trailing odd row or
    column of cells has no block.
    """
    grid = chunk.grid
    step = chunk.effective_cell_size
    bu = np.arange(0, grid[face.u] - 1, 2, dtype=np.float64)
    bv = np.arange(0, grid[face.v] - 1, 2, dtype=np.float64)
    if bu.size == 0 or bv.size == 0:
        return np.zeros((0, 13, 3), dtype=np.float64)

    block_v, block_u = np.meshgrid(bv, bu, indexing="ij")
    block_u = block_u.reshape(-1, 1)
    block_v = block_v.reshape(-1, 1)

    plane = grid[face.axis] * step if face.sign > 0 else 0.0
    pos = np.zeros((block_u.shape[0], 13, 3), dtype=np.float64)
    pos[:, :, face.u] = (block_u + _STENCIL[None, :, 0]) * step
    pos[:, :, face.v] = (block_v + _STENCIL[None, :, 1]) * step
    pos[:, :, face.axis] = plane + face.sign * _STENCIL[None, :, 2] * TRANSITION_WIDTH * step
    return pos


def stencil_samples(chunk: Chunk, pos: np.ndarray, density) -> np.ndarray:
    """Signed samples for every stencil, shape (blocks, 13).

    Only the 9 fine points are sampled. Coarse points 9-12 carry the values of
    fine corners 0, 2, 6 and 8: the case tables assume those signs, so every
    table edge has a real sign change.
    """
    world = pos[:, :9] + chunk.origin
    fine = sample_points(density, world[..., 0], world[..., 1], world[..., 2]) - chunk.iso_level
    return np.concatenate([fine, fine[:, _COARSE_SOURCES]], axis=1)


def transition_case_masks(samples: np.ndarray) -> np.ndarray:
    """9-bit case per block from the fine stencil samples only."""
    mask = np.zeros(samples.shape[0], dtype=np.int32)
    for k in range(9):
        mask |= (samples[:, k] < 0.0).astype(np.int32) << k
    return mask


def build_face_geometry(chunk: Chunk, face: Face, density) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Transition patch for one face: (local vertices, normals, local indices)."""
    pos = stencil_positions(chunk, face)
    if pos.shape[0] == 0:
        return np.zeros((0, 3)), np.zeros((0, 3), dtype=np.float32), np.zeros((0,), dtype=np.uint32)

    samples = stencil_samples(chunk, pos, density)
    masks = transition_case_masks(samples)

    block_ids: list[int] = []
    ends_a: list[int] = []
    ends_b: list[int] = []
    for b in np.nonzero((masks != 0) & (masks != 511))[0].tolist():
        mask = int(masks[b])
        cls = TRANSITION_CELL_CLASS[mask]
        tris = TRANSITION_CELL_DATA[cls & TRANSITION_CLASS_MASK]
        verts = TRANSITION_VERTEX_DATA[mask]
        flip = bool(cls & TRANSITION_FLIP)
        for t in range(0, len(tris), 3):
            corners = (tris[t], tris[t + 2], tris[t + 1]) if flip else tris[t:t + 3]
            for vi in corners:
                a, c = unpack_edge(verts[vi])
                block_ids.append(b)
                ends_a.append(a)
                ends_b.append(c)

    if not block_ids:
        return np.zeros((0, 3)), np.zeros((0, 3), dtype=np.float32), np.zeros((0,), dtype=np.uint32)

    bi = np.array(block_ids, dtype=np.int64)
    ia = np.array(ends_a, dtype=np.int64)
    ib = np.array(ends_b, dtype=np.int64)
    local = interpolate_crossings(pos[bi, ia], pos[bi, ib], samples[bi, ia], samples[bi, ib])
    step = chunk.effective_cell_size
    normals = estimate_normals(density, local + chunk.origin, gradient_step(density, step))
    return local, normals, np.arange(local.shape[0], dtype=np.uint32)


def build_transition_mesh(chunk: Chunk, needs: TransitionNeeds, density, mesh: Optional[ChunkMesh] = None) -> ChunkMesh:
    """Append transition patches for every flagged face to `mesh`.

    The regular geometry already in `mesh` is kept as-is; the result is a new
    mesh with the patches after it.
    """
    if density is None:
        raise MissingDensityError(f"chunk {chunk.coord} has no density field")
    out = mesh if mesh is not None else ChunkMesh.empty()
    for face in flagged_faces(needs):
        verts, norms, idx = build_face_geometry(chunk, face, density)
        logger.debug(f"chunk {chunk.coord}: transition {face.name} +{idx.shape[0] // 3} tris")
        if idx.shape[0]:
            out = out.append(verts, norms, idx)
    return out
