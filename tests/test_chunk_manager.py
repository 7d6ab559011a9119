"""
Tests for ChunkManager: visibility, LOD assignment, seams, pooling and
deferred requests.

Chunks are 4 cells of size 1 (world size 4). With the target at the centre
of chunk (0, 0, 0), face neighbours sit at distance 4 (level 0) and edge and
corner neighbours further out (level 1).
"""

import numpy as np
import pytest

from isoterrain.config import WorldConfig
from isoterrain.world.chunk import ChunkState, TransitionNeeds
from isoterrain.world.chunk_manager import ChunkManager
from isoterrain.world.density import DensityField, MissingDensityError, PlaneField

CENTER = (2.0, 2.0, 2.0)


class _ReentrantField(DensityField):
    """Asks the manager to regenerate the chunk it is being sampled for."""

    def __init__(self, coord):
        self.coord = coord
        self.manager = None
        self.fired = 0

    def sample(self, x, y, z):
        return y - 1.3

    def sample_grid(self, x, y, z):
        if self.manager is not None and self.fired < 2:
            self.fired += 1
            self.manager.regenerate(self.coord)
        return np.asarray(y, dtype=np.float64) - 1.3


class _FailingField(DensityField):
    """Queues a regenerate for its chunk, then fails the pass it is sampled in."""

    def __init__(self, coord):
        self.coord = coord
        self.manager = None

    def sample(self, x, y, z):
        return y - 1.3

    def sample_grid(self, x, y, z):
        if self.manager is not None:
            manager, self.manager = self.manager, None
            manager.regenerate(self.coord)
            raise RuntimeError("density backend went away")
        return np.asarray(y, dtype=np.float64) - 1.3


@pytest.fixture
def terrain():
    return PlaneField(normal=(0.0, 1.0, 0.0), offset=1.3)


@pytest.fixture
def manager(small_config, terrain):
    m = ChunkManager(small_config, terrain)
    m.init(CENTER)
    return m


def _seams_consistent(m):
    return all(m.chunk_at(cc).needs == m.transition_needs(cc) for cc in m.active_coords())


class TestVisibility:
    def test_init_fills_view(self, manager):
        coords = manager.active_coords()
        assert len(coords) == 27
        assert (0, 0, 0) in coords and (1, 1, 1) in coords and (-1, -1, -1) in coords
        for cc in coords:
            ch = manager.chunk_at(cc)
            assert ch.coord == cc
            assert ch.state is ChunkState.IDLE
            np.testing.assert_allclose(ch.origin, np.array(cc) * 4.0)

    def test_surface_only_in_crossing_row(self, manager):
        assert manager.chunk_at((0, 0, 0)).mesh.n_triangles == 4 * 4 * 2
        assert manager.chunk_at((0, 1, 0)).mesh.n_triangles == 0
        assert manager.chunk_at((0, -1, 0)).mesh.n_triangles == 0

    def test_levels_by_distance(self, manager):
        assert manager.lod_level((0, 0, 0)) == 0
        assert manager.lod_level((1, 0, 0)) == 0
        assert manager.lod_level((0, 0, -1)) == 0
        assert manager.lod_level((1, 1, 0)) == 1
        assert manager.lod_level((1, 1, 1)) == 1
        assert manager.chunk_at((1, 1, 1)).density_sampling == 2

    def test_stats(self, manager):
        s = manager.stats()
        assert s["chunks"] == 27
        assert s["levels"] == {0: 7, 1: 20}
        assert s["transitions"] == 6
        assert s["triangles"] > 0
        assert s["vertices"] == s["triangles"] * 3

    def test_world_to_chunk(self, manager):
        assert manager.world_to_chunk((-0.1, 0.0, 4.0)) == (-1, 0, 1)
        assert manager.world_to_chunk((3.99, 8.0, -4.0)) == (0, 2, -1)

    def test_moving_target_reuses_pooled_chunks(self, manager):
        created = manager.pool.created
        manager.tick(0.1, (6.0, 2.0, 2.0))
        coords = manager.active_coords()
        assert len(coords) == 27
        assert (2, 0, 0) in coords
        assert (-1, 0, 0) not in coords
        assert manager.chunk_at((-1, 0, 0)) is None
        assert manager.lod_level((-1, 0, 0)) is None
        assert manager.pool.created == created
        assert _seams_consistent(manager)

    def test_staying_in_chunk_does_nothing(self, manager):
        gens = {cc: manager.chunk_at(cc).generation for cc in manager.active_coords()}
        manager.tick(0.1, (2.5, 2.0, 2.0))
        assert {cc: manager.chunk_at(cc).generation for cc in manager.active_coords()} == gens


class TestTransitionNeeds:
    def test_needs_point_at_coarser_neighbours(self, manager):
        assert manager.transition_needs((0, 0, 0)) == TransitionNeeds()
        assert manager.transition_needs((1, 0, 0)) == TransitionNeeds(py=True, ny=True, pz=True, nz=True)

    def test_coarsest_level_needs_nothing(self, manager):
        assert not manager.transition_needs((1, 1, 0)).any

    def test_missing_neighbour_needs_nothing(self, manager):
        # (2, 0, 0) is outside the view
        assert not manager.transition_needs((1, 0, 0)).px

    def test_generated_seams_match_levels(self, manager):
        assert _seams_consistent(manager)
        face = manager.chunk_at((1, 0, 0))
        assert face.needs == TransitionNeeds(py=True, ny=True, pz=True, nz=True)

    def test_seams_add_geometry(self, small_config, terrain):
        plain = ChunkManager(WorldConfig(**{**small_config.__dict__, "use_adaptive_lod": False}), terrain)
        plain.init(CENTER)
        stitched = ChunkManager(small_config, terrain)
        stitched.init(CENTER)
        # (0, 0, 1) is a level 0 face neighbour with coarser chunks at +-X
        assert stitched.chunk_at((0, 0, 1)).needs.px
        assert stitched.chunk_at((0, 0, 1)).mesh.n_triangles > plain.chunk_at((0, 0, 1)).mesh.n_triangles


class TestLODUpdate:
    def test_update_lod_changes_levels_and_restitches(self, manager):
        manager.tick(0.1, (3.5, 2.0, 2.0))
        changed = manager.update_lod()
        assert changed == [(-1, 0, 0)]
        assert manager.lod_level((-1, 0, 0)) == 1
        assert manager.chunk_at((-1, 0, 0)).density_sampling == 2
        assert manager.chunk_at((0, 0, 0)).needs.nx
        assert _seams_consistent(manager)

    def test_hysteresis_holds_levels(self, manager):
        manager.tick(0.1, (2.3, 2.0, 2.0))
        assert manager.update_lod() == []

    def test_timer_drives_updates(self, manager, monkeypatch):
        calls = []
        monkeypatch.setattr(manager, "update_lod", lambda: calls.append(1) or [])
        manager.tick(0.3, CENTER)
        assert calls == []
        manager.tick(0.3, CENTER)
        assert calls == [1]

    def test_disabled_lod_keeps_level_zero(self, small_config, terrain):
        cfg = WorldConfig(**{**small_config.__dict__, "use_adaptive_lod": False})
        m = ChunkManager(cfg, terrain)
        m.init(CENTER)
        assert set(m.stats()["levels"]) == {0}
        assert m.stats()["transitions"] == 0


class TestGeneration:
    def test_regenerate_during_generation_is_coalesced(self, small_config):
        cfg = WorldConfig(**{**small_config.__dict__, "view_radius": 0})
        field = _ReentrantField((0, 0, 0))
        m = ChunkManager(cfg, field)
        m.init(CENTER)
        ch = m.chunk_at((0, 0, 0))
        before = ch.generation

        field.manager = m
        m.regenerate((0, 0, 0))
        # two requests while busy collapse into one extra pass
        assert field.fired == 2
        assert ch.generation == before + 2
        assert ch.state is ChunkState.IDLE
        assert ch.pending is None

    def test_failed_pass_drops_queued_request(self, small_config):
        cfg = WorldConfig(**{**small_config.__dict__, "view_radius": 0})
        field = _FailingField((0, 0, 0))
        m = ChunkManager(cfg, field)
        m.init(CENTER)
        ch = m.chunk_at((0, 0, 0))
        before = ch.generation

        field.manager = m
        with pytest.raises(RuntimeError):
            m.regenerate((0, 0, 0))
        assert ch.pending is None
        assert ch.state is ChunkState.IDLE
        assert ch.generation == before

        m.regenerate((0, 0, 0))
        assert ch.generation == before + 1

    def test_missing_density_raises(self, small_config):
        m = ChunkManager(small_config)
        with pytest.raises(MissingDensityError):
            m.init(CENTER)

    def test_callable_density_accepted(self, small_config):
        m = ChunkManager(small_config, lambda x, y, z: y - 1.3)
        m.init(CENTER)
        assert m.chunk_at((0, 0, 0)).mesh.n_triangles == 32

    def test_regenerate_unknown_coord_is_ignored(self, manager):
        manager.regenerate((50, 50, 50))


class TestDeferredRequests:
    def test_set_density_applies_on_next_tick(self, manager):
        ch = manager.chunk_at((0, 0, 0))
        manager.set_density(PlaneField(normal=(0.0, 1.0, 0.0), offset=2.6))
        np.testing.assert_allclose(ch.mesh.vertices[:, 1], 1.3, atol=1e-5)
        manager.tick(0.1, CENTER)
        np.testing.assert_allclose(ch.mesh.vertices[:, 1], 2.6, atol=1e-5)

    def test_set_config_rebuilds_on_next_tick(self, manager, small_config):
        cfg = WorldConfig(**{**small_config.__dict__, "cells_per_chunk": (8, 8, 8), "cell_size": 0.5})
        manager.set_config(cfg)
        assert manager.chunk_at((0, 0, 0)).cells == (4, 4, 4)
        manager.tick(0.1, CENTER)
        ch = manager.chunk_at((0, 0, 0))
        assert ch.cells == (8, 8, 8)
        assert ch.cell_size == pytest.approx(0.5)
        assert len(manager.active_coords()) == 27

    def test_shutdown_releases_everything(self, manager):
        manager.shutdown()
        assert manager.active_coords() == []
        assert manager.pool.available == 0
        assert manager.stats()["chunks"] == 0
