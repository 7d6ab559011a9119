from __future__ import annotations

import logging
from collections import Counter
from typing import Dict, Iterable, List, Optional, Set

import numpy as np

from isoterrain.config import WorldConfig
from isoterrain.world.chunk import Chunk, ChunkState, Coord, TransitionNeeds
from isoterrain.world.density import MissingDensityError, as_density
from isoterrain.world.lod import LODProfile
from isoterrain.world.mesh_builder import build_regular_mesh
from isoterrain.world.pool import ChunkPool
from isoterrain.world.transition import build_transition_mesh

logger = logging.getLogger(__name__)

# Neighbour offsets in TransitionNeeds order: +X, -X, +Y, -Y, +Z, -Z
NEIGHBOURS = ((1, 0, 0), (-1, 0, 0), (0, 1, 0), (0, -1, 0), (0, 0, 1), (0, 0, -1))


def _offset(c: Coord, d: Coord) -> Coord:
    return (c[0] + d[0], c[1] + d[1], c[2] + d[2])


class ChunkManager:
    """Owns the active chunks around a target and keeps their LOD and seams current.

    Driven by `tick(dt, target)`; everything runs synchronously on the caller's
    thread. Chunks are referenced by pool handles.
    """

    def __init__(self, config: Optional[WorldConfig] = None, density=None) -> None:
        self.config = config or WorldConfig()
        self.density = as_density(density)
        self.profile = LODProfile.from_config(self.config)
        self.pool = ChunkPool(prewarm=0, max_size=self.config.max_pool_size)

        self._chunks: Dict[Coord, int] = {}
        self._lod_levels: Dict[Coord, int] = {}
        self._target = np.zeros(3, dtype=np.float64)
        self._last_center: Optional[Coord] = None
        self._lod_timer = 0.0
        self._pending_refresh = False
        self._pending_rebuild = False
        self.ticks = 0

    # --- lifecycle ---------------------------------------------------------

    def init(self, target=None) -> None:
        if target is not None:
            self._target = np.array(target, dtype=np.float64)
        self.pool.prewarm(self.config.pool_prewarm)
        self.update_visible(force=True)

    def shutdown(self) -> None:
        self.clear_all()
        self.pool.clear()

    def tick(self, dt: float, target=None) -> None:
        self.ticks += 1
        if target is not None:
            self._target = np.array(target, dtype=np.float64)

        if self.config.use_adaptive_lod:
            self._lod_timer += float(dt)
            if self._lod_timer >= self.config.lod_update_interval:
                self._lod_timer = 0.0
                self.update_lod()

        # deferred requests from before this tick
        if self._pending_rebuild:
            self._pending_rebuild = False
            self._pending_refresh = False
            logger.info("rebuilding all chunks")
            self.clear_all()
            self.update_visible(force=True)
        elif self._pending_refresh:
            self._pending_refresh = False
            self.refresh_existing()

        if self.world_to_chunk(self._target) != self._last_center:
            self.update_visible(force=False)

    def request_refresh(self) -> None:
        """Re-apply configuration to live chunks and regenerate them on the next tick."""
        self._pending_refresh = True

    def request_rebuild(self) -> None:
        """Drop every chunk and rebuild the visible set on the next tick."""
        self._pending_rebuild = True

    def set_density(self, density) -> None:
        self.density = as_density(density)
        self.request_refresh()

    def set_config(self, config: WorldConfig) -> None:
        # chunk extent may change, so coordinates are rebuilt from scratch
        self.config = config
        self.profile = LODProfile.from_config(config)
        self.pool.max_size = config.max_pool_size
        self.request_rebuild()

    # --- coordinates -------------------------------------------------------

    @property
    def chunk_world_size(self) -> float:
        return self.config.chunk_world_size

    def world_to_chunk(self, pos) -> Coord:
        s = self.chunk_world_size
        return (int(np.floor(pos[0] / s)), int(np.floor(pos[1] / s)), int(np.floor(pos[2] / s)))

    def chunk_origin(self, coord: Coord) -> np.ndarray:
        return np.array(coord, dtype=np.float64) * self.chunk_world_size

    def chunk_center(self, coord: Coord) -> np.ndarray:
        return self.chunk_origin(coord) + self.chunk_world_size * 0.5

    def distance_to(self, coord: Coord) -> float:
        return float(np.linalg.norm(self._target - self.chunk_center(coord)))

    def needed_chunks(self, center: Coord) -> Set[Coord]:
        rx, ry, rz = self.config.view_radius
        needed: Set[Coord] = set()
        for dz in range(-rz, rz + 1):
            for dy in range(-ry, ry + 1):
                for dx in range(-rx, rx + 1):
                    needed.add((center[0] + dx, center[1] + dy, center[2] + dz))
        return needed

    # --- queries -----------------------------------------------------------

    def active_coords(self) -> List[Coord]:
        return sorted(self._chunks)

    def chunk_at(self, coord: Coord) -> Optional[Chunk]:
        handle = self._chunks.get(coord)
        return self.pool.get(handle) if handle is not None else None

    def lod_level(self, coord: Coord) -> Optional[int]:
        return self._lod_levels.get(coord)

    def transition_needs(self, coord: Coord) -> TransitionNeeds:
        """Faces whose existing neighbour sits at a strictly coarser level."""
        mine = self._lod_levels.get(coord, 0)

        def need(n: Coord) -> bool:
            if n not in self._chunks:
                return False
            level = self._lod_levels.get(n)
            return level is not None and level > mine

        return TransitionNeeds(*(need(_offset(coord, d)) for d in NEIGHBOURS))

    def stats(self) -> dict:
        chunks = [self.pool.get(h) for h in self._chunks.values()]
        return {
            "chunks": len(chunks),
            "pooled": self.pool.available,
            "vertices": sum(c.mesh.n_vertices for c in chunks),
            "triangles": sum(c.mesh.n_triangles for c in chunks),
            "levels": dict(sorted(Counter(self._lod_levels.values()).items())),
            "transitions": sum(1 for c in chunks if c.needs.any),
        }

    # --- visibility (two-phase) -------------------------------------------

    def update_visible(self, force: bool = False) -> None:
        center = self.world_to_chunk(self._target)
        self._last_center = center
        needed = self.needed_chunks(center)

        for cc in [c for c in self._chunks if c not in needed]:
            self._release(cc)

        # phase 1: register every missing chunk with its level, no geometry yet
        created = []
        for cc in sorted(needed):
            if cc in self._chunks:
                continue
            self._chunks[cc] = self._create_chunk(cc)
            created.append(cc)

        # phase 2: all levels are known, stitch and generate
        fresh = set(created)
        for cc in sorted(needed):
            ch = self.chunk_at(cc)
            if force or cc in fresh or self.transition_needs(cc) != ch.needs:
                self.regenerate(cc)

        if created:
            logger.debug(f"visible update at {center}: +{len(created)} chunks, {len(self._chunks)} active")

    def _create_chunk(self, cc: Coord) -> int:
        cfg = self.config
        handle = self.pool.acquire()
        ch = self.pool.get(handle)
        ch.state = ChunkState.CONFIGURING
        ch.coord = cc
        ch.origin = self.chunk_origin(cc)
        ch.configure(cells=cfg.cells_per_chunk, cell_size=cfg.cell_size, density_sampling=cfg.density_sampling, iso_level=cfg.iso_level)
        ch.density = self.density

        if cfg.use_adaptive_lod:
            distance = self.distance_to(cc)
            level = self.profile.level_for_distance(distance)
            self._lod_levels[cc] = level
            self._apply_lod_settings(ch, level)
            logger.debug(f"chunk {cc} at distance {distance:.1f} gets LOD {level}")
        else:
            self._lod_levels[cc] = 0
        ch.active = True
        return handle

    def _apply_lod_settings(self, ch: Chunk, level: int) -> None:
        level = self.profile.clamp(level)
        ch.lod_level = level
        ch.configure(density_sampling=self.profile.sampling(level))
        cells = self.profile.cells(level)
        if cells is not None:
            # keeps world size constant
            ch.configure(cells=cells, cell_size=self.chunk_world_size / max(1, cells[0]))

    def _release(self, cc: Coord) -> None:
        handle = self._chunks.pop(cc)
        self._lod_levels.pop(cc, None)
        pooled = self.pool.release(handle)
        logger.debug(f"chunk {cc} {'pooled' if pooled else 'destroyed'}")

    def clear_all(self) -> None:
        for cc in list(self._chunks):
            self._release(cc)
        self._last_center = None

    # --- LOD re-evaluation -------------------------------------------------

    def update_lod(self) -> List[Coord]:
        """Recompute levels with hysteresis; regenerate changed chunks and affected seams."""
        changed = []
        for cc in sorted(self._chunks):
            current = self._lod_levels.get(cc)
            level = self.profile.level_for_distance(self.distance_to(cc), current)
            if level != current:
                self._lod_levels[cc] = level
                changed.append(cc)

        for cc in changed:
            self._apply_lod_settings(self.chunk_at(cc), self._lod_levels[cc])

        self._restitch(changed)
        if changed:
            logger.debug(f"LOD update: {len(changed)} chunks changed level")
        return changed

    def _restitch(self, changed: Iterable[Coord]) -> None:
        changed = set(changed)
        dirty = set(changed)
        for cc in changed:
            dirty.update(n for n in (_offset(cc, d) for d in NEIGHBOURS) if n in self._chunks)
        for cc in sorted(dirty):
            if cc in changed or self.transition_needs(cc) != self.chunk_at(cc).needs:
                self.regenerate(cc)

    def refresh_existing(self) -> None:
        cfg = self.config
        for cc in sorted(self._chunks):
            ch = self.chunk_at(cc)
            ch.configure(cells=cfg.cells_per_chunk, cell_size=cfg.cell_size, density_sampling=cfg.density_sampling, iso_level=cfg.iso_level)
            ch.density = self.density
            if cfg.use_adaptive_lod:
                self._apply_lod_settings(ch, self._lod_levels.get(cc, 0))
        for cc in sorted(self._chunks):
            self.regenerate(cc)

    # --- generation --------------------------------------------------------

    def regenerate(self, coord: Coord) -> None:
        """Regenerate one chunk with freshly computed seams.

        A request for a chunk that is already generating is held as a single
        pending request (latest wins) and runs right after the current pass.
        """
        ch = self.chunk_at(coord)
        if ch is None:
            return
        needs = self.transition_needs(coord)
        if ch.state is ChunkState.GENERATING:
            ch.pending = needs
            return
        self._generate(ch, needs)

    def _generate(self, ch: Chunk, needs: Optional[TransitionNeeds]) -> None:
        if ch.density is None:
            raise MissingDensityError(f"chunk {ch.coord} has no density field")
        while needs is not None:
            ch.state = ChunkState.GENERATING
            try:
                mesh = build_regular_mesh(ch, ch.density)
                if needs.any:
                    mesh = build_transition_mesh(ch, needs, ch.density, mesh)
            except Exception:
                # a failed pass drops any request queued behind it
                ch.pending = None
                raise
            finally:
                ch.state = ChunkState.IDLE
            ch.mesh = mesh
            ch.needs = needs
            ch.generation += 1
            needs, ch.pending = ch.pending, None
