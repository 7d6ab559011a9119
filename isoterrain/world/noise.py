from __future__ import annotations

from dataclasses import dataclass
import numpy as np

from opensimplex import OpenSimplex


@dataclass(frozen=True)
class NoiseConfig:
    octaves: int = 4
    lacunarity: float = 2.0
    gain: float = 0.5
    base_freq: float = 0.08


class FastValueNoise2D:
    """Fast 2D value noise with fully vectorized numpy implementation.

    Uses an integer hash on lattice points and smooth interpolation.
    Deterministic for a given seed. Output lies in [0, 1).
    """

    def __init__(self, seed: int) -> None:
        self.seed = int(seed)

    @staticmethod
    def _fade(t: np.ndarray) -> np.ndarray:
        # smootherstep
        return t * t * t * (t * (t * 6 - 15) + 10)

    def _hash(self, xi: np.ndarray, zi: np.ndarray) -> np.ndarray:
        x = (xi.astype(np.uint32) * np.uint32(374761393)) ^ (zi.astype(np.uint32) * np.uint32(668265263)) ^ np.uint32(self.seed)
        x ^= (x >> np.uint32(13))
        x *= np.uint32(1274126177)
        x ^= (x >> np.uint32(16))
        return x.astype(np.float64) / float(2**32)

    def grid(self, x: np.ndarray, z: np.ndarray) -> np.ndarray:
        x = np.asarray(x, dtype=np.float64)
        z = np.asarray(z, dtype=np.float64)
        xi0 = np.floor(x).astype(np.int64)
        zi0 = np.floor(z).astype(np.int64)

        u = self._fade(x - xi0)
        v = self._fade(z - zi0)

        a = self._hash(xi0, zi0)
        b = self._hash(xi0 + 1, zi0)
        c = self._hash(xi0, zi0 + 1)
        d = self._hash(xi0 + 1, zi0 + 1)

        ab = a + (b - a) * u
        cd = c + (d - c) * u
        return ab + (cd - ab) * v


class SimplexNoise2D:
    """opensimplex-backed noise remapped to [0, 1). Slower than value noise."""

    def __init__(self, seed: int) -> None:
        self.seed = int(seed)
        self._simp = OpenSimplex(self.seed)

    def grid(self, x: np.ndarray, z: np.ndarray) -> np.ndarray:
        x = np.asarray(x, dtype=np.float64)
        z = np.asarray(z, dtype=np.float64)
        out = np.empty(np.broadcast(x, z).shape, dtype=np.float64)
        flat = out.reshape(-1)
        for i, (px, pz) in enumerate(zip(np.broadcast_to(x, out.shape).reshape(-1), np.broadcast_to(z, out.shape).reshape(-1))):
            flat[i] = self._simp.noise2(float(px), float(pz))
        return np.clip(out * 0.5 + 0.5, 0.0, 1.0 - 1e-9)


def make_noise(seed: int, mode: str = "fast"):
    if mode == "simplex":
        return SimplexNoise2D(seed)
    return FastValueNoise2D(seed)


class FBMNoise:
    """Fractal sum of a base noise. Not normalised: the sum grows with octaves."""

    def __init__(self, seed: int, cfg: NoiseConfig | None = None, *, mode: str = "fast") -> None:
        self.seed = int(seed)
        self.cfg = cfg or NoiseConfig()
        self.base = make_noise(seed, mode)

    def grid(self, x: np.ndarray, z: np.ndarray) -> np.ndarray:
        freq = self.cfg.base_freq
        amp = 1.0
        total = np.zeros(np.broadcast(x, z).shape, dtype=np.float64)
        for _ in range(self.cfg.octaves):
            total += self.base.grid(x * freq, z * freq) * amp
            freq *= self.cfg.lacunarity
            amp *= self.cfg.gain
        return total
