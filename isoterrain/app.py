from __future__ import annotations

import logging
import time

import numpy as np

from isoterrain.config import HEIGHT_SMOOTH_K, WorldConfig
from isoterrain.util.math import exp_smooth
from isoterrain.world.chunk_manager import ChunkManager

logger = logging.getLogger(__name__)


class Target:
    """Point moving along +Z; follows the terrain when the field knows its height."""

    def __init__(self, start, *, speed: float, height_offset: float, smooth_k: float = HEIGHT_SMOOTH_K) -> None:
        self.pos = np.array(start, dtype=np.float64)
        self.speed = float(speed)
        self.height_offset = float(height_offset)
        self.smooth_k = float(smooth_k)

    def update(self, dt: float, height_at=None) -> None:
        self.pos[2] += self.speed * dt
        if height_at is not None:
            target_y = float(height_at(self.pos[0], self.pos[2])) + self.height_offset
            self.pos[1] = exp_smooth(float(self.pos[1]), target_y, self.smooth_k, dt)


def run_app(
    *,
    config: WorldConfig,
    density,
    speed: float,
    duration: float,
    tick_rate: int,
    height_offset: float,
    start=None,
) -> dict:
    """Fly a target through the world for `duration` simulated seconds at a fixed tick."""
    manager = ChunkManager(config, density)
    height_at = getattr(density, "height_at", None)

    if start is None:
        half = config.chunk_world_size * 0.5
        start = (half, 0.0, half)
    target = Target(start, speed=speed, height_offset=height_offset)
    if height_at is not None:
        target.pos[1] = float(height_at(target.pos[0], target.pos[2])) + height_offset

    dt = 1.0 / max(1, int(tick_rate))
    sim_t = 0.0
    last_log = 0.0
    slowest = 0.0

    wall0 = time.perf_counter()
    manager.init(target.pos)
    logger.info(f"init: {manager.stats()} in {time.perf_counter() - wall0:.2f}s")

    try:
        while sim_t < duration:
            target.update(dt, height_at)
            t0 = time.perf_counter()
            manager.tick(dt, target.pos)
            slowest = max(slowest, time.perf_counter() - t0)
            sim_t += dt

            if sim_t - last_log >= 1.0:
                last_log = sim_t
                s = manager.stats()
                logger.info(
                    f"t={sim_t:.1f} pos=({target.pos[0]:.1f},{target.pos[1]:.1f},{target.pos[2]:.1f}) "
                    f"chunks={s['chunks']} pooled={s['pooled']} tris={s['triangles']} "
                    f"seams={s['transitions']} levels={s['levels']} slowest_tick={slowest * 1000:.0f}ms"
                )
                slowest = 0.0
        stats = manager.stats()
    finally:
        manager.shutdown()

    stats["wall_s"] = time.perf_counter() - wall0
    stats["ticks"] = manager.ticks
    return stats
