from dataclasses import dataclass
from typing import Iterator, Optional


@dataclass(frozen=True)
class ChunkWindow:
    """Inclusive id range [start, end] queried in one round trip."""

    start: int
    end: int

    @property
    def width(self) -> int:
        return self.end - self.start + 1


class ChunkCursor:
    """
    Splits [begin, min(end_limit, largest_id)] into contiguous windows of
    chunk_size ids. The last window may be shorter. Iterating again starts
    over from begin.

    end_limit=None means the scan runs up to largest_id.
    """

    def __init__(
        self,
        begin: int,
        end_limit: Optional[int],
        chunk_size: int,
        largest_id: int,
    ):
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be at least 1, got {chunk_size}")
        self.begin = begin
        self.end_limit = end_limit
        self.chunk_size = chunk_size
        self.largest_id = largest_id

    @property
    def last_id(self) -> int:
        if self.end_limit is None:
            return self.largest_id
        return min(self.end_limit, self.largest_id)

    @property
    def total(self) -> int:
        return max(0, self.last_id - self.begin + 1)

    def __iter__(self) -> Iterator[ChunkWindow]:
        last = self.last_id
        start = self.begin
        while start <= last:
            end = min(start + self.chunk_size - 1, last)
            yield ChunkWindow(start, end)
            start = end + 1

    def __len__(self) -> int:
        return -(-self.total // self.chunk_size)

    def remaining(self, window: ChunkWindow) -> int:
        """Ids left after `window` has been scanned."""
        return max(0, self.last_id - window.end)

    def percent_complete(self, window: ChunkWindow) -> float:
        # rounded to the thousandth of a percent
        if self.total == 0:
            return 100.0
        done = window.end - self.begin + 1
        return round(done / self.total * 100.0, 3)
