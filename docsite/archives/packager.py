"""Serialization of the merged site tree into a single zip artifact."""

from __future__ import annotations

import zipfile
from pathlib import Path, PurePosixPath

from ..errors import PackageError
from ..logging import get_logger
from ..models import MergedTree, PackageResult


class Packager:
    """Writes the merged tree to a deflated zip with tree-relative member names."""

    def __init__(self, compresslevel: int = 9) -> None:
        self.compresslevel = compresslevel
        self.logger = get_logger("packager")

    def package(self, tree: MergedTree, archive_path: Path) -> PackageResult:
        root = tree.root_dir
        if not root.is_dir():
            raise PackageError(f"Merged tree {root} does not exist")

        root = root.resolve()
        archive_path = archive_path.resolve()
        if archive_path.is_relative_to(root):
            raise PackageError(f"Archive {archive_path} must not be written inside the tree")

        entries = sorted(root.rglob("*"), key=lambda path: _arcname(root, path))
        files = [path for path in entries if path.is_file()]
        if not files:
            raise PackageError(f"Merged tree {root} is empty; refusing to package it")

        archive_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = archive_path.with_name(archive_path.name + ".part")
        with zipfile.ZipFile(
            tmp_path,
            "w",
            compression=zipfile.ZIP_DEFLATED,
            compresslevel=self.compresslevel,
        ) as zf:
            for path in entries:
                zf.write(path, _arcname(root, path))
        tmp_path.replace(archive_path)

        size = archive_path.stat().st_size
        self.logger.info("Packaged %d files into %s (%d bytes)", len(files), archive_path, size)
        return PackageResult(archive_path=archive_path, file_count=len(files), size_bytes=size)

    def unpack(self, archive_path: Path, destination: Path) -> MergedTree:
        """Restore a tree previously written by :meth:`package`."""
        if not archive_path.is_file():
            raise PackageError(f"Archive {archive_path} does not exist")
        try:
            with zipfile.ZipFile(archive_path) as zf:
                for name in zf.namelist():
                    member = PurePosixPath(name)
                    if member.is_absolute() or ".." in member.parts:
                        raise PackageError(f"Archive member '{name}' escapes the destination")
                destination.mkdir(parents=True, exist_ok=True)
                zf.extractall(destination)
        except zipfile.BadZipFile as exc:
            raise PackageError(f"Archive {archive_path} is corrupt: {exc}") from exc
        self.logger.info("Unpacked %s into %s", archive_path, destination)
        return MergedTree(root_dir=destination)


def _arcname(root: Path, path: Path) -> str:
    name = path.relative_to(root).as_posix()
    return f"{name}/" if path.is_dir() else name


__all__ = ["Packager"]
