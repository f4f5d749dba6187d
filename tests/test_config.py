"""Tests for docsite.config."""

from __future__ import annotations

from pathlib import Path

import pytest

from docsite.config import DEFAULT_BUILD_COMMAND, ConfigError, DocsiteConfig, load_config
from tests._fixtures.site_builder import SiteBuilder

FULL_CONFIG = """
site_dir: public
build_dir: .staging
artifact: dist/site.zip
build:
  command: [python, -m, mkdocs, build]
  jobs: 3
projects:
  - name: blacksheep
    versions:
      - label: v1
        archive: blacksheep/archive/v1.zip
  - name: mkdocs-plugins
    source_dir: plugins
    mount_path: /mkdocs-plugins/
  - name: home
    mount_path: ""
publish:
  enabled: true
  remote_url: git@github.com:Neoteroi/neoteroi.github.io.git
  branch: pages
  preserved_paths:
    - CNAME
    - README.md
    - .nojekyll
  workdir: .deploy
"""


def test_load_config_parses_expected_fields(site_builder: SiteBuilder, monkeypatch) -> None:
    monkeypatch.delenv("DOCSITE_PUBLISH", raising=False)
    config_file = site_builder.config(FULL_CONFIG)
    root = config_file.parent.resolve()

    config = load_config(config_file)

    assert isinstance(config, DocsiteConfig)
    assert config.root == root
    assert config.site_dir == root / "public"
    assert config.build_dir == root / ".staging"
    assert config.artifact == root / "dist" / "site.zip"
    assert config.build.command == ["python", "-m", "mkdocs", "build"]
    assert config.build.jobs == 3

    blacksheep, plugins, home = config.projects
    assert blacksheep.source_dir == root / "blacksheep"
    assert blacksheep.mount_path == "blacksheep"
    assert blacksheep.has_versions is True
    assert plugins.source_dir == root / "plugins"
    assert plugins.mount_path == "mkdocs-plugins"
    assert plugins.has_versions is False
    assert home.mount_path == ""
    assert home.is_root

    (snapshot,) = config.snapshots
    assert snapshot.project == blacksheep
    assert snapshot.version_label == "v1"
    assert snapshot.archive_path == root / "blacksheep" / "archive" / "v1.zip"
    assert snapshot.target_subpath == "blacksheep/v1"

    assert config.publish.enabled is True
    assert config.publish.branch == "pages"
    assert config.deploy_dir == root / ".deploy"
    target = config.publish.target()
    assert target.remote_url == "git@github.com:Neoteroi/neoteroi.github.io.git"
    assert target.branch_name == "pages"
    assert target.preserved_paths == frozenset({"CNAME", "README.md", ".nojekyll"})


def test_load_config_defaults(site_builder: SiteBuilder, monkeypatch) -> None:
    monkeypatch.delenv("DOCSITE_PUBLISH", raising=False)
    site_builder.config("projects:\n  - name: rodi\n")

    config = load_config(site_builder.root)

    assert config.site_dir == config.root / "site"
    assert config.build_dir == config.root / ".build"
    assert config.artifact == config.root / "site.zip"
    assert config.build.command == list(DEFAULT_BUILD_COMMAND)
    assert config.build.jobs == 1
    assert config.snapshots == []
    assert config.publish.enabled is False
    assert config.publish.branch == "gh-pages"
    assert config.publish.preserved_paths == ["CNAME", "README.md"]
    assert config.deploy_dir == config.root / "deploy"
    with pytest.raises(ConfigError, match="remote_url"):
        config.publish.target()


@pytest.mark.parametrize(
    ("value", "expected"),
    [("1", True), ("yes", True), ("Y", True), ("0", False), ("off", False)],
)
def test_publish_env_override(site_builder: SiteBuilder, monkeypatch, value: str, expected: bool) -> None:
    site_builder.config("projects:\n  - name: rodi\npublish:\n  enabled: false\n")
    monkeypatch.setenv("DOCSITE_PUBLISH", value)

    assert load_config(site_builder.root).publish.enabled is expected


def test_publish_env_override_ignores_garbage(site_builder: SiteBuilder, monkeypatch) -> None:
    site_builder.config("projects:\n  - name: rodi\npublish:\n  enabled: true\n")
    monkeypatch.setenv("DOCSITE_PUBLISH", "maybe")

    assert load_config(site_builder.root).publish.enabled is True


def test_config_lookup_by_project_name(site_builder: SiteBuilder) -> None:
    site_builder.config("projects:\n  - name: rodi\n  - name: home\n    mount_path: ''\n")
    config = load_config(site_builder.root)

    assert config.project("rodi").mount_path == "rodi"
    with pytest.raises(ConfigError, match="Unknown project 'ghost'"):
        config.project("ghost")


@pytest.mark.parametrize(
    ("content", "message"),
    [
        ("- just\n- a list\n", "mapping"),
        ("site_dir: site\n", "No projects"),
        ("projects: []\n", "non-empty"),
        ("projects:\n  - source_dir: x\n", "missing a name"),
        ("projects:\n  - name: a\n  - name: a\n", "Duplicate project"),
        ("projects:\n  - name: a\n    versions:\n      - label: v1\n", "label' and 'archive"),
        ("projects:\n  - name: a\nbuild:\n  jobs: 0\n", "positive"),
        ("site_dir: .\nprojects:\n  - name: a\n", "separate"),
        ("site_dir: out\nbuild_dir: out/tmp\nprojects:\n  - name: a\n", "separate"),
        ("artifact: site/site.zip\nprojects:\n  - name: a\n", "inside site_dir"),
        ("projects: [unclosed\n", "Failed to parse"),
        ("projects:\n  - name: a\n    mount_path: ../x\n", "'..' is not allowed"),
        ("projects:\n  - name: a\n    versions:\n      - label: ..\n        archive: a.zip\n", "'..' is not allowed"),
    ],
)
def test_invalid_config_raises(site_builder: SiteBuilder, content: str, message: str) -> None:
    site_builder.config(content)

    with pytest.raises(ConfigError, match=message):
        load_config(site_builder.root)


def test_missing_config_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="not found"):
        load_config(tmp_path)
