"""Tests for packaging the merged tree."""

from __future__ import annotations

import zipfile
from pathlib import Path

import pytest

from docsite.archives.packager import Packager
from docsite.errors import PackageError
from docsite.models import MergedTree
from tests._fixtures.site_builder import SiteBuilder, read_tree


def _tree(site_builder: SiteBuilder) -> MergedTree:
    root = site_builder.root / "site"
    site_builder.write(
        {
            "index.html": "<h1>Neoteroi</h1>",
            "blacksheep/index.html": "<h1>BlackSheep</h1>",
            "blacksheep/v1/index.html": "<a href='/blacksheep/v1/'>v1</a>",
            "img/neoteroi.ico": "icon",
        },
        base=root,
    )
    (root / "assets" / "empty").mkdir(parents=True)
    return MergedTree(root_dir=root)


def test_package_round_trip(site_builder: SiteBuilder, tmp_path: Path) -> None:
    tree = _tree(site_builder)
    packager = Packager()

    result = packager.package(tree, tmp_path / "site.zip")
    restored = packager.unpack(result.archive_path, tmp_path / "restored")

    assert result.file_count == 4
    assert result.size_bytes == (tmp_path / "site.zip").stat().st_size
    assert read_tree(restored.root_dir) == read_tree(tree.root_dir)
    assert (tmp_path / "restored" / "assets" / "empty").is_dir()


def test_package_uses_tree_relative_names(site_builder: SiteBuilder, tmp_path: Path) -> None:
    result = Packager().package(_tree(site_builder), tmp_path / "out" / "site.zip")

    with zipfile.ZipFile(result.archive_path) as zf:
        names = zf.namelist()

    assert "index.html" in names
    assert "blacksheep/v1/index.html" in names
    assert all(not name.startswith("site/") for name in names)
    assert names == sorted(names)


def test_package_missing_tree_fails(tmp_path: Path) -> None:
    with pytest.raises(PackageError, match="does not exist"):
        Packager().package(MergedTree(root_dir=tmp_path / "site"), tmp_path / "site.zip")


def test_package_empty_tree_fails(tmp_path: Path) -> None:
    (tmp_path / "site" / "nested").mkdir(parents=True)

    with pytest.raises(PackageError, match="empty"):
        Packager().package(MergedTree(root_dir=tmp_path / "site"), tmp_path / "site.zip")
    assert not (tmp_path / "site.zip").exists()


def test_package_rejects_archive_inside_tree(site_builder: SiteBuilder) -> None:
    tree = _tree(site_builder)

    with pytest.raises(PackageError, match="inside"):
        Packager().package(tree, tree.root_dir / "site.zip")


def test_unpack_corrupt_archive_fails(tmp_path: Path) -> None:
    archive = tmp_path / "site.zip"
    archive.write_bytes(b"garbage")

    with pytest.raises(PackageError, match="corrupt"):
        Packager().unpack(archive, tmp_path / "restored")
