from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Sequence

import numpy as np

from isoterrain.util.math import normalize
from isoterrain.world.noise import FBMNoise, NoiseConfig, make_noise


class MissingDensityError(RuntimeError):
    """Raised when a chunk is asked to generate without a density field."""


def _smoothstep(edge0: float, edge1: float, x: np.ndarray) -> np.ndarray:
    t = np.clip((x - edge0) / max(edge1 - edge0, 1e-9), 0.0, 1.0)
    return t * t * (3.0 - 2.0 * t)


class DensityField:
    """Signed density: negative = solid, positive = air.

    Subclasses implement `sample`. `sample_grid` is the vectorized entry point
    used by the meshers; the default loops over `sample`.
    """

    def sample(self, x: float, y: float, z: float) -> float:
        raise NotImplementedError

    def sample_grid(self, x: np.ndarray, y: np.ndarray, z: np.ndarray) -> np.ndarray:
        x, y, z = np.broadcast_arrays(np.asarray(x, dtype=np.float64), np.asarray(y, dtype=np.float64), np.asarray(z, dtype=np.float64))
        out = np.empty(x.shape, dtype=np.float64)
        for idx in np.ndindex(x.shape):
            out[idx] = float(self.sample(float(x[idx]), float(y[idx]), float(z[idx])))
        return out

    def gradient_step(self, cell_size: float) -> float:
        # finite-difference step for normals
        return 0.5 * cell_size


class FunctionField(DensityField):
    """Wrap a plain `f(x, y, z) -> float` callable."""

    def __init__(self, fn: Callable[[float, float, float], float]) -> None:
        self.fn = fn

    def sample(self, x: float, y: float, z: float) -> float:
        return float(self.fn(x, y, z))


def as_density(obj) -> DensityField | None:
    if obj is None or hasattr(obj, "sample"):
        return obj
    if callable(obj):
        return FunctionField(obj)
    raise TypeError(f"not a density field: {obj!r}")


@dataclass
class SphereField(DensityField):
    center: Sequence[float] = (0.0, 0.0, 0.0)
    radius: float = 6.0

    def sample(self, x: float, y: float, z: float) -> float:
        cx, cy, cz = self.center
        return float(np.sqrt((x - cx) ** 2 + (y - cy) ** 2 + (z - cz) ** 2) - self.radius)

    def sample_grid(self, x, y, z) -> np.ndarray:
        cx, cy, cz = self.center
        return np.sqrt((x - cx) ** 2 + (y - cy) ** 2 + (z - cz) ** 2) - self.radius


@dataclass
class PlaneField(DensityField):
    """Half-space below the plane dot(normal, p) = offset is solid."""

    normal: Sequence[float] = (0.0, 1.0, 0.0)
    offset: float = 0.0

    def __post_init__(self) -> None:
        # unit normal keeps the density a signed distance
        self.normal = tuple(float(c) for c in normalize(np.asarray(self.normal, dtype=np.float64)))

    def sample(self, x: float, y: float, z: float) -> float:
        nx, ny, nz = self.normal
        return float(nx * x + ny * y + nz * z - self.offset)

    def sample_grid(self, x, y, z) -> np.ndarray:
        nx, ny, nz = self.normal
        return nx * np.asarray(x, dtype=np.float64) + ny * np.asarray(y, dtype=np.float64) + nz * np.asarray(z, dtype=np.float64) - self.offset


@dataclass
class HeightField(DensityField):
    """Terrain surface y = h(x, z); everything below it is solid."""

    seed: int = 1337
    mode: str = "fast"  # "fast" | "simplex"

    base_height: float = 0.0
    amplitude: float = 8.0
    frequency: float = 0.08
    octaves: int = 4
    lacunarity: float = 2.0
    gain: float = 0.5

    # Dunes: long along the wind, tight across it
    dunes: bool = True
    wind_dir: tuple[float, float] = (1.0, 0.0)
    dune_freq_along: float = 0.02
    dune_freq_across: float = 0.2
    dune_amp: float = 2.0

    # Ridged mountains
    mountains: bool = True
    ridge_freq: float = 0.05
    ridge_amp: float = 6.0

    noise_offset: tuple[float, float] = field(default=(10000.0, 10000.0))

    def __post_init__(self) -> None:
        cfg = NoiseConfig(octaves=int(self.octaves), lacunarity=float(self.lacunarity), gain=float(self.gain), base_freq=float(self.frequency))
        self._fbm = FBMNoise(self.seed, cfg, mode=self.mode)
        self._dune = make_noise(self.seed + 77, self.mode)
        self._ridge = make_noise(self.seed + 2222, self.mode)

    def height_grid(self, x: np.ndarray, z: np.ndarray) -> np.ndarray:
        xf = np.asarray(x, dtype=np.float64) + self.noise_offset[0]
        zf = np.asarray(z, dtype=np.float64) + self.noise_offset[1]

        h = self.base_height + (self._fbm.grid(xf, zf) - 0.5) * self.amplitude

        if self.dunes:
            wx, wz = self.wind_dir
            n = float(np.hypot(wx, wz))
            ux, uz = (wx / n, wz / n) if n > 1e-2 else (1.0, 0.0)
            du = (xf * ux + zf * uz) * self.dune_freq_along
            dv = (-xf * uz + zf * ux) * self.dune_freq_across
            d = self._dune.grid(du, dv) * 0.6 + self._dune.grid(du * 2.31, dv * 2.31) * 0.4
            d = _smoothstep(0.2, 0.9, d)
            h = h + (d - 0.5) * 2.0 * self.dune_amp

        if self.mountains:
            r = 1.0 - np.abs(2.0 * self._ridge.grid(xf * self.ridge_freq, zf * self.ridge_freq) - 1.0)
            h = h + r * r * self.ridge_amp

        return h

    def height_at(self, x: float, z: float) -> float:
        return float(self.height_grid(np.array([x]), np.array([z]))[0])

    def sample(self, x: float, y: float, z: float) -> float:
        return y - self.height_at(x, z)

    def sample_grid(self, x, y, z) -> np.ndarray:
        return np.asarray(y, dtype=np.float64) - self.height_grid(x, z)
