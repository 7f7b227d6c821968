from __future__ import annotations


class DiffReviewError(RuntimeError):
    pass


class NoChangesError(DiffReviewError):
    def __init__(self, message: str = "No changes to review.") -> None:
        super().__init__(message)


class InvalidRangeError(DiffReviewError, ValueError):
    def __init__(self, start: int, end: int) -> None:
        super().__init__(f"Invalid line range: {start}-{end} (need 1 <= start <= end)")
        self.start = start
        self.end = end


class BackendError(DiffReviewError):
    """A failure from git, a grammar or a content reader, with context attached.

    The underlying exception is kept on ``__cause__``; the message is never
    reinterpreted, only prefixed with where it happened.
    """

    def __init__(
        self,
        message: str,
        *,
        repo: str | None = None,
        commit: str | None = None,
        path: str | None = None,
    ) -> None:
        context = []
        if repo:
            context.append(f"repo={repo}")
        if commit:
            context.append(f"commit={commit}")
        if path:
            context.append(f"file={path}")
        suffix = f" [{', '.join(context)}]" if context else ""
        super().__init__(f"{message}{suffix}")
        self.repo = repo
        self.commit = commit
        self.path = path


class GapIntegrityError(DiffReviewError):
    def __init__(self, path: str, boundary: str, old_size: int, new_size: int) -> None:
        super().__init__(
            f"Context gap size mismatch in {path} at {boundary}: "
            f"old side has {old_size} line(s), new side has {new_size}; hunk metadata is malformed"
        )
        self.path = path
        self.boundary = boundary
        self.old_size = old_size
        self.new_size = new_size
