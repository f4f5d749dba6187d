"""Pipeline orchestration for build/pack/publish/snapshot/clean flows."""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from .aggregator import SiteAggregator, staging_path
from .archives.expander import ArchiveExpander
from .archives.packager import Packager
from .builder import ProjectBuilder
from .config import ConfigError, DocsiteConfig, validate_mount_path
from .errors import PublishError
from .git.publisher import Publisher
from .logging import get_logger
from .models import MergedTree, PackageResult, PublishResult, SkippedFile, join_mount_path
from .postproc.links import LinkRewriter


@dataclass
class BuildSummary:
    """Result of a ``build`` run."""

    tree: MergedTree
    package: Optional[PackageResult]

    @property
    def skipped_links(self) -> List[SkippedFile]:
        return [item for report in self.tree.rewrite_reports for item in report.skipped]


class Pipeline:
    """Coordinates the docsite stages for a loaded configuration."""

    def __init__(
        self,
        config: DocsiteConfig,
        builder: ProjectBuilder | None = None,
        expander: ArchiveExpander | None = None,
        rewriter: LinkRewriter | None = None,
        packager: Packager | None = None,
        publisher: Publisher | None = None,
    ) -> None:
        self.config = config
        self.builder = builder or ProjectBuilder(command=config.build.command)
        self.expander = expander or ArchiveExpander()
        self.rewriter = rewriter or LinkRewriter()
        self.packager = packager or Packager()
        self.publisher = publisher
        self.logger = get_logger("pipeline")

    def run_build(self, *, package: bool = True, jobs: int | None = None) -> BuildSummary:
        """Build every project into the merged tree and optionally package it."""
        config = self.config
        aggregator = SiteAggregator(
            self.builder,
            self.expander,
            self.rewriter,
            jobs=jobs or config.build.jobs,
        )
        self.logger.info("Building %d project(s) into %s", len(config.projects), config.site_dir)
        tree = aggregator.aggregate(
            config.projects, config.snapshots, config.site_dir, config.build_dir
        )
        summary = BuildSummary(tree=tree, package=None)
        if summary.skipped_links:
            self.logger.warning(
                "%d file(s) skipped during link rewriting", len(summary.skipped_links)
            )
        if package:
            summary.package = self.packager.package(tree, config.artifact)
        return summary

    def run_pack(self) -> PackageResult:
        """Package the existing merged tree without rebuilding."""
        return self.packager.package(MergedTree(root_dir=self.config.site_dir), self.config.artifact)

    def run_publish(self, *, from_archive: Path | None = None) -> PublishResult:
        """Publish the merged tree to the configured hosting branch."""
        publish_cfg = self.config.publish
        if not publish_cfg.enabled:
            raise PublishError(
                "publishing is disabled (set publish.enabled or DOCSITE_PUBLISH=1)"
            )
        if not publish_cfg.remote_url:
            raise PublishError("publish.remote_url is not configured")
        target = publish_cfg.target()

        if from_archive is not None:
            site_dir = self.config.site_dir
            if site_dir.exists():
                shutil.rmtree(site_dir)
            tree = self.packager.unpack(from_archive, site_dir)
        else:
            tree = MergedTree(root_dir=self.config.site_dir)

        publisher = self.publisher or Publisher()
        return publisher.publish(tree, target, self.config.deploy_dir)

    def run_snapshot(
        self, project_name: str, version_label: str, *, output: Path | None = None
    ) -> PackageResult:
        """Build one project as a relocatable version archive."""
        project = self.config.project(project_name)
        label = validate_mount_path(version_label, "Version label")
        if not label:
            raise ConfigError("Version label must not be empty")
        staging = self.config.build_dir / "snapshots" / project.name / label
        build_output = self.builder.build(project, staging)

        prefix = join_mount_path(project.mount_path, label)
        report = self.rewriter.rewrite(
            build_output.root_dir, prefix, mount_path=project.mount_path
        )
        self._log_skipped(report.skipped)

        archive = output or (project.source_dir / "archive" / f"{label}.zip")
        result = self.packager.package(MergedTree(root_dir=build_output.root_dir), archive)
        self.logger.info(
            "Snapshot %s@%s written to %s (mount at /%s)", project.name, label, archive, prefix
        )
        return result

    def run_clean(self) -> List[Path]:
        """Remove every disposable build product."""
        config = self.config
        removed: List[Path] = []
        for path in (
            config.site_dir,
            staging_path(config.site_dir),
            config.build_dir,
            config.deploy_dir,
        ):
            if path.exists():
                shutil.rmtree(path)
                removed.append(path)
        if config.artifact.exists():
            config.artifact.unlink()
            removed.append(config.artifact)
        for path in removed:
            self.logger.debug("Removed %s", path)
        return removed

    def _log_skipped(self, skipped: List[SkippedFile]) -> None:
        level = logging.WARNING if skipped else logging.DEBUG
        self.logger.log(level, "%d file(s) skipped during link rewriting", len(skipped))


__all__ = ["BuildSummary", "Pipeline"]
