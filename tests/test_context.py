import sys
import tempfile
import threading
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from diffreview import context
from diffreview.diff import load_review_diff
from diffreview.errors import BackendError, GapIntegrityError
from diffreview.git_backend import run_git
from diffreview.model import (
    ORIGIN_ADDITION,
    ORIGIN_CONTEXT,
    SIDE_NEW,
    SIDE_OLD,
    STATUS_ADDED,
    STATUS_DELETED,
    STATUS_MODIFIED,
    DiffFile,
    DiffHunk,
    DiffLine,
)


class FakeReader:
    def __init__(self, old_lines, new_lines):
        self.lines = {SIDE_OLD: old_lines, SIDE_NEW: new_lines}
        self.reads = []

    def read_lines(self, path, side):
        self.reads.append((path, side))
        return self.lines[side]

    def line_count(self, path, side):
        if path is None:
            return 0
        return len(self.lines[side])


def context_hunk(start, count):
    lines = [DiffLine(ORIGIN_CONTEXT, f"line {start + i}", start + i, start + i) for i in range(count)]
    return DiffHunk(f"@@ -{start},{count} +{start},{count} @@", start, count, start, count, lines)


def two_hunk_file():
    return DiffFile("a.py", "a.py", STATUS_MODIFIED, hunks=[context_hunk(10, 5), context_hunk(30, 3)])


def numbered(total):
    return [f"line {number}" for number in range(1, total + 1)]


class TestCalculateGap(unittest.TestCase):
    def test_gap_between_two_hunks(self):
        gap = context.calculate_gap(two_hunk_file(), "before:1")
        self.assertEqual((gap.old_start, gap.old_end), (15, 29))
        self.assertEqual((gap.new_start, gap.new_end), (15, 29))
        self.assertEqual(gap.size, 15)

    def test_boundary_ids(self):
        self.assertEqual(context.boundary_ids(two_hunk_file()), ["start", "before:1", "end"])
        self.assertEqual(context.boundary_ids(DiffFile("a", "a", STATUS_MODIFIED)), ["start"])
        self.assertEqual(context.boundary_ids(DiffFile("a", "a", STATUS_MODIFIED, is_binary=True)), [])

    def test_unknown_boundary_raises_lookup_error(self):
        with self.assertRaises(LookupError):
            context.calculate_gap(two_hunk_file(), "before:7")
        with self.assertRaises(LookupError):
            context.calculate_gap(two_hunk_file(), "middle")

    def test_start_and_end_gaps(self):
        file = two_hunk_file()
        start = context.calculate_gap(file, "start")
        self.assertEqual((start.old_start, start.old_end, start.size), (1, 9, 9))
        end = context.calculate_gap(file, "end", old_total=40, new_total=40)
        self.assertEqual((end.old_start, end.old_end, end.size), (33, 40, 8))
        with self.assertRaises(ValueError):
            context.calculate_gap(file, "end")

    def test_zero_count_hunk_sits_after_its_start_line(self):
        insertion = DiffHunk(
            "@@ -5,0 +6,2 @@",
            5,
            0,
            6,
            2,
            [DiffLine(ORIGIN_ADDITION, "x", None, 6), DiffLine(ORIGIN_ADDITION, "y", None, 7)],
        )
        file = DiffFile("a.py", "a.py", STATUS_MODIFIED, hunks=[insertion])
        start = context.calculate_gap(file, "start")
        self.assertEqual((start.old_start, start.old_end, start.new_start, start.new_end), (1, 5, 1, 5))
        end = context.calculate_gap(file, "end", old_total=8, new_total=10)
        self.assertEqual((end.old_start, end.old_end, end.new_start, end.new_end), (6, 8, 8, 10))

    def test_mismatched_sides_raise_integrity_error(self):
        broken = DiffHunk("@@ -10,1 +12,1 @@", 10, 1, 12, 1, [DiffLine(ORIGIN_CONTEXT, "x", 10, 12)])
        file = DiffFile("a.py", "a.py", STATUS_MODIFIED, hunks=[broken])
        with self.assertRaises(GapIntegrityError) as raised:
            context.calculate_gap(file, "start")
        self.assertEqual((raised.exception.old_size, raised.exception.new_size), (9, 11))

    def test_overlapping_hunks_raise_integrity_error(self):
        file = DiffFile("a.py", "a.py", STATUS_MODIFIED, hunks=[context_hunk(10, 5), context_hunk(12, 2)])
        with self.assertRaises(GapIntegrityError):
            context.calculate_gap(file, "before:1")

    def test_binary_file_has_no_gaps(self):
        with self.assertRaises(LookupError):
            context.calculate_gap(DiffFile("a", "a", STATUS_MODIFIED, is_binary=True), "start")


class TestContextGapEngine(unittest.TestCase):
    def test_materialize_returns_identical_content_twice(self):
        reader = FakeReader(numbered(40), numbered(40))
        engine = context.ContextGapEngine(reader)
        file = two_hunk_file()

        first = engine.materialize(file, "before:1")
        second = engine.materialize(file, "before:1")
        self.assertEqual(first, second)
        self.assertEqual(len(first), 15)
        self.assertEqual(first[0].content, "line 15")
        self.assertEqual(first[-1].content, "line 29")
        self.assertTrue(all(line.origin == ORIGIN_CONTEXT for line in first))
        self.assertEqual((first[0].old_lineno, first[0].new_lineno), (15, 15))
        self.assertEqual(reader.reads, [("a.py", SIDE_NEW)])
        self.assertTrue(engine.is_materialized(file, "before:1"))

    def test_expand_from_top_and_bottom(self):
        engine = context.ContextGapEngine(FakeReader(numbered(40), numbered(40)))
        file = two_hunk_file()
        top = engine.expand(file, "before:1", 3)
        bottom = engine.expand(file, "before:1", 2, from_end=True)
        self.assertEqual([line.content for line in top], ["line 15", "line 16", "line 17"])
        self.assertEqual([line.content for line in bottom], ["line 28", "line 29"])
        self.assertEqual(len(engine.expand(file, "before:1", 0)), 15)

    def test_end_gap_uses_reader_totals(self):
        engine = context.ContextGapEngine(FakeReader(numbered(36), numbered(36)))
        gaps = engine.gaps(two_hunk_file())
        self.assertEqual([gap.size for gap in gaps], [9, 15, 4])

    def test_new_side_numbers_follow_offset(self):
        hunks = [
            DiffHunk(
                "@@ -1,1 +1,3 @@",
                1,
                1,
                1,
                3,
                [
                    DiffLine(ORIGIN_CONTEXT, "line 1", 1, 1),
                    DiffLine(ORIGIN_ADDITION, "a", None, 2),
                    DiffLine(ORIGIN_ADDITION, "b", None, 3),
                ],
            )
        ]
        file = DiffFile("a.py", "a.py", STATUS_MODIFIED, hunks=hunks)
        new_lines = ["line 1", "a", "b", "line 2", "line 3"]
        engine = context.ContextGapEngine(FakeReader(numbered(3), new_lines))
        lines = engine.materialize(file, "end")
        self.assertEqual([(line.old_lineno, line.new_lineno) for line in lines], [(2, 4), (3, 5)])
        self.assertEqual([line.content for line in lines], ["line 2", "line 3"])

    def test_deleted_file_reads_old_side(self):
        hunk = DiffHunk("@@ -3,1 +0,0 @@", 3, 1, 0, 0, [])
        file = DiffFile("gone.py", None, STATUS_DELETED, hunks=[hunk])
        gap = context.ContextGap(file, "start", 1, 2, 1, 2)
        reader = FakeReader(numbered(3), [])
        lines = context.fetch_context_lines(reader, gap)
        self.assertEqual([line.content for line in lines], ["line 1", "line 2"])
        self.assertEqual(reader.reads, [("gone.py", SIDE_OLD)])

    def test_added_file_totals_skip_old_side(self):
        reader = FakeReader([], numbered(2))
        file = DiffFile(None, "new.py", STATUS_ADDED)
        self.assertEqual(context.file_line_totals(reader, file), (0, 2))

    def test_short_read_raises_backend_error(self):
        engine = context.ContextGapEngine(FakeReader(numbered(40), numbered(20)))
        with self.assertRaises(BackendError):
            engine.materialize(two_hunk_file(), "before:1")

    def test_concurrent_requests_share_one_cached_tuple(self):
        engine = context.ContextGapEngine(FakeReader(numbered(40), numbered(40)))
        file = two_hunk_file()
        results = []

        def worker():
            results.append(engine.materialize(file, "before:1"))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        self.assertEqual(len(results), 8)
        self.assertTrue(all(item is engine.materialize(file, "before:1") for item in results))


class TestContextWithGit(unittest.TestCase):
    def test_gap_content_comes_from_working_tree(self):
        with tempfile.TemporaryDirectory() as tmp:
            repo = Path(tmp)
            run_git(repo, ["init"])
            run_git(repo, ["config", "user.email", "ut@example.com"])
            run_git(repo, ["config", "user.name", "UT"])
            original = [f"row {number}" for number in range(1, 41)]
            (repo / "data.txt").write_text("\n".join(original) + "\n", encoding="utf-8")
            run_git(repo, ["add", "-A"])
            run_git(repo, ["commit", "-m", "base"])

            changed = list(original)
            changed[4] = "row 5 changed"
            changed[34] = "row 35 changed"
            (repo / "data.txt").write_text("\n".join(changed) + "\n", encoding="utf-8")

            review = load_review_diff(repo)
            file = review.files[0]
            self.assertEqual(len(file.hunks), 2)
            engine = context.ContextGapEngine(review.reader)
            gap = engine.gap(file, "before:1")
            lines = engine.materialize(file, "before:1")
            self.assertEqual(len(lines), gap.size)
            self.assertEqual(lines[0].content, f"row {gap.new_start}")
            end_gap = engine.gap(file, "end")
            self.assertEqual(end_gap.old_end, 40)


if __name__ == "__main__":
    unittest.main()
