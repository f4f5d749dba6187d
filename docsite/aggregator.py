"""Assembly of every project build and version snapshot into one site tree."""

from __future__ import annotations

import shutil
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from .archives.expander import ArchiveExpander
from .builder import ProjectBuilder
from .errors import AggregationError, DocsiteError
from .logging import get_logger
from .models import (
    BuildOutput,
    ExpandedSnapshot,
    MergedTree,
    MountedEntry,
    Project,
    VersionSnapshot,
    join_mount_path,
)
from .postproc.links import LinkRewriter


@dataclass(frozen=True)
class MountSpec:
    """A declared mount point: a live project build or one of its snapshots."""

    path: str
    project: Project
    snapshot: Optional[VersionSnapshot] = None

    @property
    def label(self) -> str:
        if self.snapshot is None:
            return self.project.name
        return f"{self.project.name}@{self.snapshot.version_label}"


def is_nested(parent: str, child: str) -> bool:
    """Return True when mount ``child`` lies strictly below mount ``parent``."""
    if parent == child:
        return False
    if parent == "":
        return True
    return child.startswith(f"{parent}/")


def contains(mount: str, relative_path: str) -> bool:
    return mount == "" or relative_path == mount or relative_path.startswith(f"{mount}/")


def check_mount_layout(mounts: Sequence[MountSpec]) -> None:
    """Reject duplicate mount paths and nesting other than the two sanctioned forms.

    Any entry may live under the root mount (``""``), and a snapshot may live under
    its own project's live mount. Everything else that nests is ambiguous.
    """
    conflicts: List[str] = []
    details: List[str] = []
    seen: Dict[str, MountSpec] = {}
    for mount in mounts:
        other = seen.get(mount.path)
        if other is not None:
            conflicts.append(mount.path)
            details.append(f"{other.label} and {mount.label} share '{mount.path or '/'}'")
            continue
        seen[mount.path] = mount

    for outer in mounts:
        for inner in mounts:
            if not is_nested(outer.path, inner.path):
                continue
            if outer.path == "" and outer.snapshot is None:
                continue
            if (
                outer.snapshot is None
                and inner.snapshot is not None
                and inner.project.name == outer.project.name
            ):
                continue
            conflicts.append(inner.path)
            details.append(f"{inner.label} is nested inside {outer.label}")

    if conflicts:
        raise AggregationError(sorted(set(conflicts)), "; ".join(details))


def staging_path(tree_root: Path) -> Path:
    """Sibling directory the merged tree is assembled in before it replaces ``tree_root``."""
    return tree_root.with_name(f".{tree_root.name}.partial")


def _relocate(tree: MergedTree, staging: Path, tree_root: Path) -> MergedTree:
    def move(path: Path) -> Path:
        return tree_root / path.relative_to(staging)

    entries: Dict[str, MountedEntry] = {}
    for mount, entry in tree.mounted_entries.items():
        if isinstance(entry, ExpandedSnapshot):
            entry = replace(entry, root_dir=move(entry.root_dir))
        entries[mount] = entry
    for report in tree.rewrite_reports:
        report.tree_root = move(report.tree_root)
        report.skipped = [replace(item, path=move(item.path)) for item in report.skipped]
    return MergedTree(
        root_dir=tree_root, mounted_entries=entries, rewrite_reports=tree.rewrite_reports
    )


class SiteAggregator:
    """Builds every project and splices the results into a single merged tree."""

    def __init__(
        self,
        builder: ProjectBuilder | None = None,
        expander: ArchiveExpander | None = None,
        rewriter: LinkRewriter | None = None,
        *,
        jobs: int = 1,
    ) -> None:
        self.builder = builder or ProjectBuilder()
        self.expander = expander or ArchiveExpander()
        self.rewriter = rewriter or LinkRewriter()
        self.jobs = max(1, jobs)
        self.logger = get_logger("aggregator")

    def aggregate(
        self,
        projects: Sequence[Project],
        snapshots: Sequence[VersionSnapshot],
        tree_root: Path,
        build_root: Path,
    ) -> MergedTree:
        """Assemble the merged tree in a staging directory and swap it into ``tree_root``.

        ``tree_root`` is only replaced once every entry has been mounted and validated,
        so a failed run leaves the previous site (or no site) in place, never a partial one.
        """
        if not projects:
            raise AggregationError([], "no projects configured")

        versioned = self._select_snapshots(projects, snapshots)
        mounts = [MountSpec(path=project.mount_path, project=project) for project in projects]
        mounts.extend(
            MountSpec(path=snapshot.target_subpath, project=snapshot.project, snapshot=snapshot)
            for snapshot in versioned
        )
        check_mount_layout(mounts)

        staging = staging_path(tree_root)
        self._reset(staging)
        self._reset(build_root)
        try:
            tree = self._assemble(projects, versioned, staging, build_root)
        except DocsiteError:
            self.logger.info("Partial site left at %s; %s was not touched", staging, tree_root)
            raise

        if tree_root.exists():
            shutil.rmtree(tree_root)
        staging.rename(tree_root)
        tree = _relocate(tree, staging, tree_root)
        self.logger.info(
            "Merged %d entries into %s", len(tree.mounted_entries), tree_root
        )
        return tree

    def _assemble(
        self,
        projects: Sequence[Project],
        versioned: Sequence[VersionSnapshot],
        tree_root: Path,
        build_root: Path,
    ) -> MergedTree:
        tree = MergedTree(root_dir=tree_root)
        owners: Dict[str, str] = {}

        for output in self._build_all(projects, build_root):
            mount_path = output.project.mount_path
            destination = tree_root / mount_path if mount_path else tree_root
            self.logger.info(
                "Mounting %s at /%s (%d files)", output.project.name, mount_path, output.file_count
            )
            self._copy_tree(output.root_dir, destination, tree_root, mount_path, owners)
            tree.mounted_entries[mount_path] = output

        for snapshot in versioned:
            expanded = self._mount_snapshot(snapshot, tree_root, owners)
            tree.mounted_entries[snapshot.target_subpath] = expanded
            report = self.rewriter.rewrite(
                expanded.root_dir,
                join_mount_path(snapshot.project.mount_path, snapshot.version_label),
                mount_path=snapshot.project.mount_path,
            )
            tree.rewrite_reports.append(report)
            for skipped in report.skipped:
                self.logger.warning("Link rewrite skipped %s: %s", skipped.path, skipped.reason)

        self._validate_ownership(tree, owners)
        return tree

    # ------------------------------------------------------------------
    # Steps

    def _select_snapshots(
        self, projects: Sequence[Project], snapshots: Iterable[VersionSnapshot]
    ) -> List[VersionSnapshot]:
        known = {project.name: project for project in projects}
        selected: List[VersionSnapshot] = []
        for snapshot in snapshots:
            project = known.get(snapshot.project.name)
            if project is None:
                raise AggregationError(
                    [snapshot.target_subpath],
                    f"snapshot {snapshot.version_label} belongs to unknown project "
                    f"'{snapshot.project.name}'",
                )
            if not project.has_versions:
                self.logger.warning(
                    "Ignoring snapshot %s of %s: project is not versioned",
                    snapshot.version_label,
                    project.name,
                )
                continue
            selected.append(snapshot)
        return selected

    def _build_all(self, projects: Sequence[Project], build_root: Path) -> List[BuildOutput]:
        def _build(project: Project) -> BuildOutput:
            return self.builder.build(project, build_root / project.name)

        if self.jobs == 1 or len(projects) == 1:
            return [_build(project) for project in projects]

        self.logger.debug("Building %d projects with %d workers", len(projects), self.jobs)
        with ThreadPoolExecutor(max_workers=self.jobs) as executor:
            return list(executor.map(_build, projects))

    def _mount_snapshot(
        self, snapshot: VersionSnapshot, tree_root: Path, owners: Dict[str, str]
    ) -> ExpandedSnapshot:
        target = snapshot.target_subpath
        clashing = sorted(path for path in owners if contains(target, path))
        if clashing:
            raise AggregationError(
                [target, *clashing[:5]],
                f"live build of '{snapshot.project.name}' already produced files under "
                f"'{target}'",
            )
        expanded = self.expander.expand(snapshot, tree_root)
        for path in expanded.root_dir.rglob("*"):
            if path.is_file():
                owners[path.relative_to(tree_root).as_posix()] = target
        return expanded

    @staticmethod
    def _copy_tree(
        source: Path,
        destination: Path,
        tree_root: Path,
        mount_path: str,
        owners: Dict[str, str],
    ) -> None:
        conflicts: List[str] = []
        destination.mkdir(parents=True, exist_ok=True)
        for path in sorted(source.rglob("*")):
            target = destination / path.relative_to(source)
            relative = target.relative_to(tree_root).as_posix()
            if path.is_dir():
                if target.exists() and not target.is_dir():
                    conflicts.append(relative)
                    continue
                target.mkdir(parents=True, exist_ok=True)
                continue
            if target.exists():
                conflicts.append(relative)
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(path, target)
            owners[relative] = mount_path
        if conflicts:
            raise AggregationError(
                conflicts, f"mounting '{mount_path or '/'}' would overwrite existing files"
            )

    def _validate_ownership(self, tree: MergedTree, owners: Dict[str, str]) -> None:
        """Every file must be routed to the entry that produced it."""
        mounts = sorted(tree.mounted_entries, key=len, reverse=True)
        conflicts: List[str] = []
        for relative, owner in owners.items():
            routed = next((mount for mount in mounts if contains(mount, relative)), None)
            if routed != owner:
                conflicts.append(relative)
        if conflicts:
            conflicts.sort()
            raise AggregationError(
                conflicts[:20],
                f"{len(conflicts)} file(s) fall inside another entry's mount path",
            )

    @staticmethod
    def _reset(path: Path) -> None:
        if path.exists():
            shutil.rmtree(path)
        path.mkdir(parents=True)


__all__ = [
    "MountSpec",
    "SiteAggregator",
    "check_mount_layout",
    "contains",
    "is_nested",
    "staging_path",
]
