from __future__ import annotations

import logging
from typing import Callable, List, Optional

from isoterrain.world.chunk import Chunk, ChunkState

logger = logging.getLogger(__name__)


class ChunkPool:
    """Chunk storage addressed by integer handles.

    Slots hold the storage; a freelist of handles tracks deactivated entries
    ready for reuse. Handles stay valid until the slot is destroyed.
    """

    def __init__(self, *, prewarm: int = 16, max_size: int = 256, factory: Optional[Callable[[int], Chunk]] = None) -> None:
        self.max_size = max(0, int(max_size))
        self.factory = factory or (lambda handle: Chunk(handle=handle))

        self._slots: List[Optional[Chunk]] = []
        self._free: List[int] = []
        self._vacant: List[int] = []

        self.created = 0
        self.destroyed = 0
        self.prewarm(prewarm)

    def _allocate(self) -> int:
        handle = self._vacant.pop() if self._vacant else len(self._slots)
        chunk = self.factory(handle)
        chunk.handle = handle
        if handle == len(self._slots):
            self._slots.append(chunk)
        else:
            self._slots[handle] = chunk
        self.created += 1
        return handle

    def prewarm(self, count: int) -> None:
        count = max(0, min(int(count), self.max_size - len(self._free)))
        for _ in range(count):
            handle = self._allocate()
            self._slots[handle].state = ChunkState.POOLED
            self._free.append(handle)
        if count:
            logger.info(f"pool prewarmed with {count} chunks")

    @property
    def available(self) -> int:
        return len(self._free)

    @property
    def live(self) -> int:
        return sum(1 for c in self._slots if c is not None and c.state is not ChunkState.POOLED)

    def get(self, handle: int) -> Chunk:
        chunk = self._slots[handle] if 0 <= handle < len(self._slots) else None
        if chunk is None:
            raise KeyError(f"no chunk behind handle {handle}")
        return chunk

    def acquire(self) -> int:
        handle = self._free.pop() if self._free else self._allocate()
        chunk = self._slots[handle]
        chunk.state = ChunkState.UNCONFIGURED
        return handle

    def release(self, handle: int) -> bool:
        """Deactivate a chunk. Returns True if it was pooled, False if destroyed."""
        chunk = self.get(handle)
        if chunk.state is ChunkState.POOLED:
            return True
        chunk.state = ChunkState.RELEASING
        chunk.reset()
        if len(self._free) < self.max_size:
            chunk.state = ChunkState.POOLED
            self._free.append(handle)
            return True
        self._destroy(handle)
        return False

    def _destroy(self, handle: int) -> None:
        self._slots[handle].state = ChunkState.DESTROYED
        self._slots[handle] = None
        self._vacant.append(handle)
        self.destroyed += 1

    def clear(self) -> None:
        """Destroy every pooled entry."""
        while self._free:
            self._destroy(self._free.pop())
