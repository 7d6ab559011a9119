import numpy as np
import pytest

from isoterrain.config import WorldConfig
from isoterrain.world.chunk import Chunk
from isoterrain.world.density import PlaneField, SphereField


def triangle_normals(vertices, indices):
    """Unnormalised face normals (cross of the two leading edges), one per triangle."""
    tri = vertices[np.asarray(indices, dtype=np.int64).reshape(-1, 3)].astype(np.float64)
    return np.cross(tri[:, 1] - tri[:, 0], tri[:, 2] - tri[:, 0])


# ============== Fixtures ==============

@pytest.fixture
def plane_field():
    """f(p) = p.y: solid below y = 0."""
    return PlaneField(normal=(0.0, 1.0, 0.0), offset=0.0)


@pytest.fixture
def sphere_field():
    return SphereField(center=(4.0, 4.0, 4.0), radius=3.3)


@pytest.fixture
def make_chunk():
    """Build a configured chunk with a given origin and resolution."""

    def _make(origin=(0.0, 0.0, 0.0), cells=8, cell_size=1.0, sampling=1, iso=0.0):
        ch = Chunk(handle=0, coord=(0, 0, 0))
        ch.origin = np.array(origin, dtype=np.float64)
        ch.configure(cells=(cells, cells, cells), cell_size=cell_size, density_sampling=sampling, iso_level=iso)
        return ch

    return _make


@pytest.fixture
def small_config():
    """4 cells of size 1 per chunk, two LOD levels, no per-level cell counts."""
    return WorldConfig(
        cells_per_chunk=(4, 4, 4),
        cell_size=1.0,
        view_radius=(1, 1, 1),
        lod_distances=(4.0, 100.0),
        lod_samplings=(1, 2),
        lod_cell_counts=(),
        use_adaptive_lod=True,
        lod_update_interval=0.5,
        lod_hysteresis=0.1,
        pool_prewarm=4,
        max_pool_size=64,
    )
