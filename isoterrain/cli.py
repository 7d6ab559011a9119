from __future__ import annotations

import argparse
import logging
import random

from isoterrain.app import run_app
from isoterrain.config import (
    APP_VERSION,
    CELL_SIZE,
    CELLS_PER_CHUNK,
    DEFAULT_DURATION,
    DEFAULT_FIELD,
    DEFAULT_HEIGHT_OFFSET,
    DEFAULT_NOISE,
    DEFAULT_SEED,
    DEFAULT_SPEED,
    DEFAULT_TICK_RATE,
    LOD_UPDATE_INTERVAL,
    MAX_POOL_SIZE,
    POOL_PREWARM,
    USE_ADAPTIVE_LOD,
    VIEW_RADIUS,
    WorldConfig,
)
from isoterrain.world.density import HeightField, PlaneField, SphereField

logger = logging.getLogger("isoterrain")


def _parse_args(argv=None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="isoterrain", description=f"Headless chunked isosurface terrain streaming v{APP_VERSION}")
    p.add_argument("--seed", default=str(DEFAULT_SEED), help=f"int seed or 'random' (default: {DEFAULT_SEED})")
    p.add_argument("--noise", choices=["fast", "simplex"], default=DEFAULT_NOISE, help="terrain noise mode (fast or simplex)")
    p.add_argument("--field", choices=["terrain", "sphere", "plane"], default=DEFAULT_FIELD, help="density field to mesh")
    p.add_argument("--speed", type=float, default=DEFAULT_SPEED, help="target speed along +Z (world units / sec)")
    p.add_argument("--duration", type=float, default=DEFAULT_DURATION, help="simulated seconds to run")
    p.add_argument("--tick-rate", type=int, default=DEFAULT_TICK_RATE, help="ticks per simulated second")
    p.add_argument("--height-offset", type=float, default=DEFAULT_HEIGHT_OFFSET, help="target height above terrain")
    p.add_argument("--view-radius", type=int, default=None, help=f"chunks around the target (default: {VIEW_RADIUS})")
    p.add_argument("--cells", type=int, default=CELLS_PER_CHUNK[0], help="cells per chunk side at full detail")
    p.add_argument("--cell-size", type=float, default=CELL_SIZE, help="cell size at full detail")
    p.add_argument(
        "--lod",
        dest="lod",
        action="store_true",
        default=USE_ADAPTIVE_LOD,
        help="enable adaptive LOD (default on)",
    )
    p.add_argument("--no-lod", dest="lod", action="store_false", help="disable adaptive LOD")
    p.add_argument("--lod-interval", type=float, default=LOD_UPDATE_INTERVAL, help="seconds between LOD re-evaluations")
    p.add_argument("--pool-prewarm", type=int, default=POOL_PREWARM, help="chunks allocated up front")
    p.add_argument("--max-pool", type=int, default=MAX_POOL_SIZE, help="max pooled chunks kept for reuse")
    p.add_argument("--debug", action="store_true", help="verbose per-chunk logs")
    return p.parse_args(argv)


def _make_field(kind: str, seed: int, noise: str, chunk_world_size: float):
    if kind == "sphere":
        half = chunk_world_size * 0.5
        return SphereField(center=(half, 0.0, half), radius=chunk_world_size * 0.75)
    if kind == "plane":
        return PlaneField()
    return HeightField(seed=seed, mode=noise)


def main(argv=None) -> None:
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="[isoterrain] %(message)s",
    )

    if isinstance(args.seed, str) and args.seed.lower() == "random":
        seed = random.randint(0, 2**31 - 1)
    else:
        seed = int(args.seed)

    cells = max(1, int(args.cells))
    config = WorldConfig(
        cells_per_chunk=(cells, cells, cells),
        cell_size=float(args.cell_size),
        view_radius=VIEW_RADIUS if args.view_radius is None else int(args.view_radius),
        use_adaptive_lod=bool(args.lod),
        lod_update_interval=float(args.lod_interval),
        pool_prewarm=int(args.pool_prewarm),
        max_pool_size=int(args.max_pool),
    )
    density = _make_field(args.field, seed, args.noise, config.chunk_world_size)
    logger.info(f"seed={seed} field={args.field} noise={args.noise} chunk={config.chunk_world_size:g} lod={'on' if config.use_adaptive_lod else 'off'}")

    stats = run_app(
        config=config,
        density=density,
        speed=float(args.speed),
        duration=float(args.duration),
        tick_rate=int(args.tick_rate),
        height_offset=float(args.height_offset),
    )
    logger.info(
        f"done: {stats['ticks']} ticks in {stats['wall_s']:.2f}s, "
        f"{stats['chunks']} chunks, {stats['triangles']} triangles, levels={stats['levels']}"
    )


if __name__ == "__main__":
    main()
