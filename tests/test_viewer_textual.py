import asyncio
import sys
import tempfile
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from textual.widgets import DataTable, Input

from diffreview.comments import KIND_NOTE, KIND_SUGGESTION, CommentStore, LineRange
from diffreview.diff import MODE_WORKING_TREE, ReviewDiff
from diffreview.model import (
    ORIGIN_ADDITION,
    ORIGIN_CONTEXT,
    ORIGIN_DELETION,
    SIDE_NEW,
    SIDE_OLD,
    STATUS_MODIFIED,
    DiffFile,
    DiffHunk,
    DiffLine,
)
from diffreview.viewer_textual import CommentModal, DiffReviewApp, line_anchor


class FakeReader:
    def __init__(self, total):
        self.lines = [f"line {number}" for number in range(1, total + 1)]

    def read_lines(self, path, side):
        return self.lines

    def line_count(self, path, side):
        return len(self.lines)


def make_review():
    hunk = DiffHunk(
        "@@ -5,2 +5,2 @@",
        5,
        2,
        5,
        2,
        [
            DiffLine(ORIGIN_CONTEXT, "line 5", 5, 5),
            DiffLine(ORIGIN_DELETION, "old 6", 6, None),
            DiffLine(ORIGIN_ADDITION, "new 6", None, 6),
        ],
    )
    files = [
        DiffFile("src/a.py", "src/a.py", STATUS_MODIFIED, hunks=[hunk]),
        DiffFile("logo.png", "logo.png", STATUS_MODIFIED, is_binary=True),
    ]
    return ReviewDiff(files=files, reader=FakeReader(10), mode=MODE_WORKING_TREE, description="test")


# Rows of src/a.py: file, gap(start), hunk, line 5, old 6, new 6, gap(end)
ROW_START_GAP = 1
ROW_CONTEXT = 3
ROW_DELETION = 4
ROW_ADDITION = 5


class TestLineAnchor(unittest.TestCase):
    def test_sides(self):
        self.assertEqual(line_anchor(DiffLine(ORIGIN_DELETION, "x", 4, None)), (SIDE_OLD, 4))
        self.assertEqual(line_anchor(DiffLine(ORIGIN_ADDITION, "x", None, 7)), (SIDE_NEW, 7))
        self.assertEqual(line_anchor(DiffLine(ORIGIN_CONTEXT, "x", 3, 5)), (SIDE_NEW, 5))


class TestDiffReviewApp(unittest.TestCase):
    def _move(self, app, row):
        app.query_one("#lines", DataTable).move_cursor(row=row)

    async def _submit_comment(self, app, pilot, text):
        await pilot.pause()
        app.screen.query_one("#comment_input", Input).value = text
        await pilot.press("enter")
        await pilot.pause()

    def test_mount_lists_files_and_rows(self):
        app = DiffReviewApp(make_review(), CommentStore())
        result = {}

        async def _run() -> None:
            async with app.run_test() as pilot:
                await pilot.pause()
                result["files"] = app.query_one("#files", DataTable).row_count
                result["types"] = [row.row_type for row in app._rows]

        asyncio.run(_run())
        self.assertEqual(result["files"], 2)
        self.assertEqual(result["types"], ["file", "gap", "hunk", "line", "line", "line", "gap"])

    def test_add_single_line_comment(self):
        store = CommentStore()
        app = DiffReviewApp(make_review(), store)

        async def _run() -> None:
            async with app.run_test() as pilot:
                await pilot.press("l")
                self._move(app, ROW_ADDITION)
                await pilot.press("m")
                await self._submit_comment(app, pilot, "rename this")

        asyncio.run(_run())
        anchors = store.anchors()
        self.assertEqual(len(anchors), 1)
        self.assertEqual((anchors[0].side, anchors[0].line_range), (SIDE_NEW, LineRange(6, 6)))
        self.assertEqual(anchors[0].content, "rename this")
        self.assertEqual(anchors[0].kind, KIND_NOTE)

    def test_range_comment_uses_mark(self):
        store = CommentStore()
        app = DiffReviewApp(make_review(), store)

        async def _run() -> None:
            async with app.run_test() as pilot:
                await pilot.press("l")
                self._move(app, ROW_CONTEXT)
                await pilot.press("v")
                self._move(app, ROW_ADDITION)
                await pilot.press("k")
                await pilot.press("m")
                await self._submit_comment(app, pilot, "both lines")

        asyncio.run(_run())
        anchor = store.anchors()[0]
        self.assertEqual(anchor.line_range, LineRange(5, 6))
        self.assertEqual(anchor.kind, KIND_SUGGESTION)
        self.assertIsNone(app.range_mark)

    def test_range_across_hidden_lines_is_rejected_and_mark_kept(self):
        first = DiffHunk(
            "@@ -5,2 +5,2 @@",
            5,
            2,
            5,
            2,
            [
                DiffLine(ORIGIN_CONTEXT, "line 5", 5, 5),
                DiffLine(ORIGIN_DELETION, "old 6", 6, None),
                DiffLine(ORIGIN_ADDITION, "new 6", None, 6),
            ],
        )
        second = DiffHunk("@@ -9,1 +9,1 @@", 9, 1, 9, 1, [DiffLine(ORIGIN_CONTEXT, "line 9", 9, 9)])
        files = [DiffFile("src/a.py", "src/a.py", STATUS_MODIFIED, hunks=[first, second])]
        review = ReviewDiff(files=files, reader=FakeReader(10), mode=MODE_WORKING_TREE, description="test")
        store = CommentStore()
        app = DiffReviewApp(review, store)
        result = {}

        def _row_for(number):
            return next(i for i, row in enumerate(app._rows) if row.row_type == "line" and row.line.new_lineno == number)

        async def _run() -> None:
            async with app.run_test() as pilot:
                await pilot.press("l")
                self._move(app, _row_for(5))
                await pilot.press("v")
                self._move(app, _row_for(9))
                await pilot.press("m")
                await pilot.pause()
                result["modal"] = isinstance(app.screen, CommentModal)

        asyncio.run(_run())
        self.assertFalse(result["modal"])
        self.assertEqual(len(store), 0)
        self.assertEqual(app.range_mark, ("src/a.py", SIDE_NEW, 5))

    def test_deleted_line_comment_goes_to_old_side(self):
        store = CommentStore()
        app = DiffReviewApp(make_review(), store)

        async def _run() -> None:
            async with app.run_test() as pilot:
                await pilot.press("l")
                self._move(app, ROW_DELETION)
                await pilot.press("m")
                await self._submit_comment(app, pilot, "why removed")

        asyncio.run(_run())
        anchor = store.anchors()[0]
        self.assertEqual((anchor.side, anchor.line_range), (SIDE_OLD, LineRange(6, 6)))

    def test_expand_gap_by_step(self):
        app = DiffReviewApp(make_review(), CommentStore(), expand_step=2)
        result = {}

        async def _run() -> None:
            async with app.run_test() as pilot:
                await pilot.press("l")
                self._move(app, ROW_START_GAP)
                await pilot.press("x")
                await pilot.pause()
                result["types"] = [row.row_type for row in app._rows[:5]]
                self._move(app, 3)
                await pilot.press("X")
                await pilot.pause()
                result["after"] = [row.row_type for row in app._rows[:6]]

        asyncio.run(_run())
        self.assertEqual(app.revealed, {("src/a.py", "start"): 2})
        self.assertEqual(result["types"], ["file", "expanded", "expanded", "gap", "hunk"])
        self.assertIn(("src/a.py", "start"), app.expanded)
        self.assertEqual(result["after"], ["file", "expanded", "expanded", "expanded", "expanded", "hunk"])

    def test_delete_and_cycle_existing_comment(self):
        store = CommentStore()
        handle = store.create("src/a.py", SIDE_NEW, (6, 6), KIND_NOTE, "existing")
        app = DiffReviewApp(make_review(), store)
        result = {}

        async def _run() -> None:
            async with app.run_test() as pilot:
                await pilot.press("l")
                comment_row = next(i for i, row in enumerate(app._rows) if row.handle == handle)
                self._move(app, comment_row)
                await pilot.press("k")
                await pilot.pause()
                result["kind"] = store.get(handle).kind
                comment_row = next(i for i, row in enumerate(app._rows) if row.handle == handle)
                self._move(app, comment_row)
                await pilot.press("d")
                await pilot.pause()

        asyncio.run(_run())
        self.assertEqual(result["kind"], KIND_SUGGESTION)
        self.assertEqual(len(store), 0)

    def test_save_and_export(self):
        store = CommentStore()
        store.create("src/a.py", SIDE_NEW, (6, 6), KIND_NOTE, "saved note")
        with tempfile.TemporaryDirectory() as tmp:
            comments_path = Path(tmp) / "comments.json"
            markdown_path = Path(tmp) / "review.md"
            app = DiffReviewApp(make_review(), store, comments_path=comments_path, markdown_path=markdown_path)

            async def _run() -> None:
                async with app.run_test() as pilot:
                    await pilot.press("s")
                    await pilot.press("h")
                    await pilot.pause()

            asyncio.run(_run())
            self.assertIn("saved note", comments_path.read_text(encoding="utf-8"))
            self.assertIn("saved note", markdown_path.read_text(encoding="utf-8"))


if __name__ == "__main__":
    unittest.main()
