"""Configuration loading for docsite (.docsite.yml)."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import yaml

from .models import Project, PublishTarget, VersionSnapshot, normalize_mount_path

CONFIG_FILENAME = ".docsite.yml"
PUBLISH_ENV_VAR = "DOCSITE_PUBLISH"

DEFAULT_BUILD_COMMAND: Tuple[str, ...] = ("mkdocs", "build", "--clean")
DEFAULT_PRESERVED_PATHS: Tuple[str, ...] = ("CNAME", "README.md")


class ConfigError(RuntimeError):
    """Raised when the configuration file cannot be parsed."""


@dataclass
class BuildConfig:
    """How the site generator is invoked."""

    command: List[str] = field(default_factory=lambda: list(DEFAULT_BUILD_COMMAND))
    jobs: int = 1


@dataclass
class PublishConfig:
    """Publish settings for the hosting branch."""

    enabled: bool = False
    remote_url: Optional[str] = None
    branch: str = "gh-pages"
    preserved_paths: List[str] = field(default_factory=lambda: list(DEFAULT_PRESERVED_PATHS))
    workdir: Optional[Path] = None

    def target(self) -> PublishTarget:
        if not self.remote_url:
            raise ConfigError("publish.remote_url must be set to publish")
        return PublishTarget(
            remote_url=self.remote_url,
            branch_name=self.branch,
            preserved_paths=frozenset(self.preserved_paths),
        )


@dataclass
class DocsiteConfig:
    """Represents the settings defined in .docsite.yml."""

    root: Path
    site_dir: Path
    build_dir: Path
    artifact: Path
    build: BuildConfig = field(default_factory=BuildConfig)
    projects: List[Project] = field(default_factory=list)
    snapshots: List[VersionSnapshot] = field(default_factory=list)
    publish: PublishConfig = field(default_factory=PublishConfig)

    def project(self, name: str) -> Project:
        for project in self.projects:
            if project.name == name:
                return project
        known = ", ".join(project.name for project in self.projects) or "none"
        raise ConfigError(f"Unknown project '{name}' (configured: {known})")

    @property
    def deploy_dir(self) -> Path:
        return self.publish.workdir or (self.root / "deploy")


def load_config(config_path: Path) -> DocsiteConfig:
    """Load configuration from disk, applying environment overrides."""
    config_file = _resolve_config_path(config_path)
    root = config_file.parent.resolve()

    if not config_file.exists():
        raise ConfigError(f"{CONFIG_FILENAME} not found at {config_file}")

    data = _read_config(config_file)
    if not isinstance(data, dict):
        raise ConfigError(f"{CONFIG_FILENAME} must contain a mapping at the root")

    site_dir = root / (_as_str(data.get("site_dir")) or "site")
    build_dir = root / (_as_str(data.get("build_dir")) or ".build")
    artifact = root / (_as_str(data.get("artifact")) or "site.zip")
    if site_dir == root or site_dir.is_relative_to(build_dir) or build_dir.is_relative_to(site_dir):
        raise ConfigError("site_dir and build_dir must be separate directories below the config root")
    if artifact.is_relative_to(site_dir):
        raise ConfigError("artifact must not be written inside site_dir")

    build_data = _as_dict(data.get("build"))
    build = BuildConfig()
    if build_data:
        command = _as_str_list(build_data.get("command"))
        if command:
            build.command = command
        jobs = _as_int(build_data.get("jobs"))
        if jobs is not None:
            if jobs < 1:
                raise ConfigError("build.jobs must be a positive integer")
            build.jobs = jobs

    projects, snapshots = _parse_projects(data.get("projects"), root)

    publish_data = _as_dict(data.get("publish"))
    publish = PublishConfig()
    if publish_data:
        publish.enabled = _as_bool(publish_data.get("enabled")) or False
        publish.remote_url = _as_str(publish_data.get("remote_url"))
        publish.branch = _as_str(publish_data.get("branch")) or publish.branch
        if "preserved_paths" in publish_data:
            publish.preserved_paths = _as_str_list(publish_data.get("preserved_paths"))
        workdir = _as_str(publish_data.get("workdir"))
        publish.workdir = root / workdir if workdir else None

    env_value = os.getenv(PUBLISH_ENV_VAR)
    env_bool = _parse_env_bool(env_value)
    if env_bool is not None:
        publish.enabled = env_bool

    return DocsiteConfig(
        root=root,
        site_dir=site_dir,
        build_dir=build_dir,
        artifact=artifact,
        build=build,
        projects=projects,
        snapshots=snapshots,
        publish=publish,
    )


def _parse_projects(raw: Any, root: Path) -> tuple[List[Project], List[VersionSnapshot]]:
    if raw is None:
        raise ConfigError("No projects configured")
    if not isinstance(raw, list) or not raw:
        raise ConfigError("'projects' must be a non-empty list")

    projects: List[Project] = []
    snapshots: List[VersionSnapshot] = []
    seen: set[str] = set()
    for index, item in enumerate(raw):
        entry = _as_dict(item)
        name = _as_str(entry.get("name"))
        if not name:
            raise ConfigError(f"projects[{index}] is missing a name")
        if name in seen:
            raise ConfigError(f"Duplicate project name '{name}'")
        seen.add(name)

        source = _as_str(entry.get("source_dir")) or name
        mount_raw = entry.get("mount_path", name)
        mount_path = validate_mount_path(
            mount_raw if isinstance(mount_raw, str) else name, f"projects[{index}].mount_path"
        )

        versions = entry.get("versions") or []
        if not isinstance(versions, list):
            raise ConfigError(f"projects[{index}].versions must be a list")
        has_versions = _as_bool(entry.get("has_versions"))
        if has_versions is None:
            has_versions = bool(versions)

        project = Project(
            name=name,
            source_dir=root / source,
            mount_path=mount_path,
            has_versions=has_versions,
        )
        projects.append(project)

        for version in versions:
            version_data = _as_dict(version)
            label = validate_mount_path(
                _as_str(version_data.get("label")) or "", f"Version label of project '{name}'"
            )
            archive = _as_str(version_data.get("archive"))
            if not label or not archive:
                raise ConfigError(
                    f"Versions of project '{name}' need both 'label' and 'archive'"
                )
            snapshots.append(
                VersionSnapshot(project=project, version_label=label, archive_path=root / archive)
            )
    return projects, snapshots


def validate_mount_path(value: str, what: str) -> str:
    """Normalize ``value`` as a path below the site root, rejecting ``..`` segments."""
    if ".." in value.replace("\\", "/").split("/"):
        raise ConfigError(f"{what} must stay inside site_dir; '..' is not allowed in {value!r}")
    return normalize_mount_path(value)


def _resolve_config_path(config_path: Path) -> Path:
    config_path = config_path.expanduser()
    if config_path.is_dir():
        return (config_path / CONFIG_FILENAME).resolve()
    return config_path.resolve()


def _read_config(path: Path) -> Dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    if not text.strip():
        return {}
    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse {path.name}: {exc}") from exc
    return loaded or {}


def _parse_env_bool(value: Optional[str]) -> Optional[bool]:
    if value is None:
        return None
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "y", "on"}:
        return True
    if lowered in {"0", "false", "no", "n", "off"}:
        return False
    return None


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_str(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return None
    return str(value) if isinstance(value, (str, int, float)) else None


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return None
    return None


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return _parse_env_bool(value)
    return None


def _as_str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, Sequence):
        return [str(item) for item in value if isinstance(item, (str, int, float))]
    return []


__all__ = [
    "BuildConfig",
    "CONFIG_FILENAME",
    "ConfigError",
    "DocsiteConfig",
    "PUBLISH_ENV_VAR",
    "PublishConfig",
    "load_config",
    "validate_mount_path",
]
