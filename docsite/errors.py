"""Fatal error taxonomy for the docsite pipeline."""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .models import Project, PublishState, VersionSnapshot


class DocsiteError(RuntimeError):
    """Base class for errors that abort a pipeline run."""

    component = "pipeline"


class BuildError(DocsiteError):
    """Raised when the site generator fails for a project."""

    component = "builder"

    def __init__(self, project: "Project", cause: str) -> None:
        self.project = project
        self.cause = cause
        super().__init__(f"Build of project '{project.name}' failed: {cause}")


class ExpandError(DocsiteError):
    """Raised when a version snapshot archive cannot be expanded."""

    component = "expander"

    def __init__(self, snapshot: "VersionSnapshot", cause: str) -> None:
        self.snapshot = snapshot
        self.cause = cause
        super().__init__(
            f"Cannot expand snapshot {snapshot.project.name}@{snapshot.version_label} "
            f"({snapshot.archive_path}): {cause}"
        )


class AggregationError(DocsiteError):
    """Raised when mounted entries would make routing ambiguous."""

    component = "aggregator"

    def __init__(self, conflicting_paths: Sequence[str], detail: str | None = None) -> None:
        self.conflicting_paths = list(conflicting_paths)
        listed = ", ".join(repr(path) for path in self.conflicting_paths)
        message = f"Conflicting mount paths: {listed}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class PackageError(DocsiteError):
    """Raised when the merged tree cannot be packaged."""

    component = "packager"

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class PublishError(DocsiteError):
    """Raised when publishing fails, before or after confirmation."""

    component = "publisher"

    def __init__(self, reason: str, state: "PublishState | None" = None) -> None:
        self.reason = reason
        self.state = state
        if state is None:
            super().__init__(reason)
        else:
            super().__init__(f"{reason} (during {state.value})")


__all__ = [
    "AggregationError",
    "BuildError",
    "DocsiteError",
    "ExpandError",
    "PackageError",
    "PublishError",
]
