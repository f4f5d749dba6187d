"""Core data models passed between docsite pipeline stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Union


def normalize_mount_path(value: str) -> str:
    """Return ``value`` as a slash-separated path without leading/trailing slashes."""
    parts = [part for part in value.replace("\\", "/").split("/") if part and part != "."]
    return "/".join(parts)


def join_mount_path(*parts: str) -> str:
    return normalize_mount_path("/".join(parts))


@dataclass(frozen=True)
class Project:
    """One documentation sub-project with its own MkDocs configuration."""

    name: str
    source_dir: Path
    mount_path: str
    has_versions: bool = False

    @property
    def is_root(self) -> bool:
        return self.mount_path == ""


@dataclass(frozen=True)
class BuildOutput:
    """Generator output for a single project."""

    project: Project
    root_dir: Path
    file_count: int


@dataclass(frozen=True)
class VersionSnapshot:
    """A previously built, archived copy of a project's site."""

    project: Project
    version_label: str
    archive_path: Path

    @property
    def target_subpath(self) -> str:
        return join_mount_path(self.project.mount_path, self.version_label)


@dataclass(frozen=True)
class ExpandedSnapshot:
    """A snapshot after extraction into the merged tree."""

    snapshot: VersionSnapshot
    root_dir: Path
    file_count: int


MountedEntry = Union[BuildOutput, ExpandedSnapshot]


@dataclass(frozen=True)
class SkippedFile:
    path: Path
    reason: str


@dataclass
class RewriteReport:
    """Summary of a link rewriting pass over one tree."""

    tree_root: Path
    version_prefix: str
    files_scanned: int = 0
    files_rewritten: int = 0
    links_rewritten: int = 0
    skipped: List[SkippedFile] = field(default_factory=list)


@dataclass
class MergedTree:
    """The full publishable site assembled from every project and snapshot."""

    root_dir: Path
    mounted_entries: Dict[str, MountedEntry] = field(default_factory=dict)
    rewrite_reports: List[RewriteReport] = field(default_factory=list)


@dataclass(frozen=True)
class PublishTarget:
    """Remote hosting branch that receives the merged tree."""

    remote_url: str
    branch_name: str = "gh-pages"
    preserved_paths: frozenset[str] = frozenset({"CNAME", "README.md"})


@dataclass(frozen=True)
class PackageResult:
    archive_path: Path
    file_count: int
    size_bytes: int


class PublishState(str, Enum):
    """States of the publish workflow."""

    AWAITING_CONFIRMATION = "awaiting-confirmation"
    CANCELLED = "cancelled"
    CLONING = "cloning"
    REPLACING = "replacing"
    COMMITTING = "committing"
    PUSHING_FORCED = "pushing-forced"
    DONE = "done"


@dataclass
class PublishResult:
    """Outcome of a publish attempt that did not fail."""

    state: PublishState
    history: List[PublishState] = field(default_factory=list)
    commit_message: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self.state is PublishState.CANCELLED


__all__ = [
    "BuildOutput",
    "ExpandedSnapshot",
    "MergedTree",
    "MountedEntry",
    "PackageResult",
    "Project",
    "PublishResult",
    "PublishState",
    "PublishTarget",
    "RewriteReport",
    "SkippedFile",
    "VersionSnapshot",
    "join_mount_path",
    "normalize_mount_path",
]
