import unittest

from sharkspotter.scan.chunk import ChunkCursor, ChunkWindow


class ChunkCursorTests(unittest.TestCase):
    def test_windows_cover_range(self):
        cursor = ChunkCursor(begin=1, end_limit=None, chunk_size=2, largest_id=5)
        windows = list(cursor)
        self.assertEqual(windows, [ChunkWindow(1, 2), ChunkWindow(3, 4), ChunkWindow(5, 5)])
        self.assertEqual(len(cursor), 3)

    def test_windows_contiguous_and_sized(self):
        for begin, end_limit, size, largest in [(0, None, 7, 100), (3, 50, 10, 1000), (10, None, 1, 14), (0, 99, 100, 99)]:
            cursor = ChunkCursor(begin, end_limit, size, largest)
            windows = list(cursor)
            last = largest if end_limit is None else min(end_limit, largest)
            self.assertEqual(windows[0].start, begin)
            self.assertEqual(windows[-1].end, last)
            for prev, cur in zip(windows, windows[1:]):
                self.assertEqual(cur.start, prev.end + 1)
            for w in windows[:-1]:
                self.assertEqual(w.width, size)
            self.assertLessEqual(windows[-1].width, size)
            expected = -(-(last - begin + 1) // size)
            self.assertEqual(len(windows), expected)
            self.assertEqual(len(cursor), expected)

    def test_end_limit_clips(self):
        cursor = ChunkCursor(begin=0, end_limit=7, chunk_size=5, largest_id=1000)
        self.assertEqual(list(cursor), [ChunkWindow(0, 4), ChunkWindow(5, 7)])

    def test_empty_when_largest_below_begin(self):
        cursor = ChunkCursor(begin=10, end_limit=None, chunk_size=5, largest_id=3)
        self.assertEqual(list(cursor), [])
        self.assertEqual(len(cursor), 0)
        self.assertEqual(cursor.total, 0)

    def test_restartable(self):
        cursor = ChunkCursor(begin=0, end_limit=None, chunk_size=3, largest_id=8)
        self.assertEqual(list(cursor), list(cursor))

    def test_progress(self):
        cursor = ChunkCursor(begin=1, end_limit=None, chunk_size=2, largest_id=6)
        first = next(iter(cursor))
        self.assertEqual(cursor.remaining(first), 4)
        self.assertEqual(cursor.percent_complete(first), 33.333)
        self.assertEqual(cursor.percent_complete(ChunkWindow(5, 6)), 100.0)

    def test_invalid_chunk_size(self):
        with self.assertRaises(ValueError):
            ChunkCursor(begin=0, end_limit=None, chunk_size=0, largest_id=10)


if __name__ == "__main__":
    unittest.main()
