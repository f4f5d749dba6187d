"""Extraction of archived documentation versions into a site tree."""

from __future__ import annotations

import shutil
import subprocess
import tarfile
import zipfile
from pathlib import Path, PurePosixPath
from typing import Dict, List, Tuple

from ..builder import Runner, run_command
from ..errors import ExpandError
from ..logging import get_logger
from ..models import ExpandedSnapshot, VersionSnapshot

_TAR_SUFFIXES = (".tar", ".tar.gz", ".tgz", ".tar.bz2", ".tbz2", ".tar.xz", ".txz")


class ArchiveExpander:
    """Unpacks a :class:`VersionSnapshot` under ``<mount_path>/<version_label>``.

    Every member is checked before anything is written: members escaping the
    destination and members that would overwrite existing files abort the
    expansion, so a failed expansion never leaves a half-written version behind.
    """

    def __init__(self, runner: Runner | None = None, seven_zip: str = "7z") -> None:
        self.seven_zip = seven_zip
        self._runner = runner or run_command
        self.logger = get_logger("expander")

    def expand(self, snapshot: VersionSnapshot, destination_root: Path) -> ExpandedSnapshot:
        archive = snapshot.archive_path
        if not archive.is_file():
            raise ExpandError(snapshot, "archive does not exist")

        destination = destination_root / snapshot.target_subpath
        if destination.exists() and not destination.is_dir():
            raise ExpandError(snapshot, f"destination {destination} is a file")

        name = archive.name.lower()
        if name.endswith(".zip"):
            file_count = self._expand_zip(snapshot, destination)
        elif name.endswith(_TAR_SUFFIXES):
            file_count = self._expand_tar(snapshot, destination)
        elif name.endswith(".7z"):
            file_count = self._expand_7z(snapshot, destination)
        else:
            raise ExpandError(snapshot, f"unsupported archive format '{archive.suffix}'")

        self.logger.info(
            "Expanded %s@%s into %s (%d files)",
            snapshot.project.name,
            snapshot.version_label,
            snapshot.target_subpath or ".",
            file_count,
        )
        return ExpandedSnapshot(snapshot=snapshot, root_dir=destination, file_count=file_count)

    # ------------------------------------------------------------------
    # Format handlers

    def _expand_zip(self, snapshot: VersionSnapshot, destination: Path) -> int:
        try:
            with zipfile.ZipFile(snapshot.archive_path) as zf:
                corrupt = zf.testzip()
                if corrupt is not None:
                    raise ExpandError(snapshot, f"corrupt member '{corrupt}'")
                members = [(info.filename, info.is_dir()) for info in zf.infolist()]
                files = self._check_members(snapshot, destination, members)
                destination.mkdir(parents=True, exist_ok=True)
                zf.extractall(destination)
        except zipfile.BadZipFile as exc:
            raise ExpandError(snapshot, f"corrupt archive: {exc}") from exc
        except OSError as exc:
            raise ExpandError(snapshot, f"extraction failed: {exc}") from exc
        return files

    def _expand_tar(self, snapshot: VersionSnapshot, destination: Path) -> int:
        try:
            with tarfile.open(snapshot.archive_path) as tf:
                infos = tf.getmembers()
                for info in infos:
                    if not (info.isfile() or info.isdir()):
                        raise ExpandError(
                            snapshot, f"unsupported member type for '{info.name}'"
                        )
                members = [(info.name, info.isdir()) for info in infos]
                files = self._check_members(snapshot, destination, members)
                destination.mkdir(parents=True, exist_ok=True)
                tf.extractall(destination, filter="data")
        except (tarfile.TarError, EOFError) as exc:
            raise ExpandError(snapshot, f"corrupt archive: {exc}") from exc
        except OSError as exc:
            raise ExpandError(snapshot, f"extraction failed: {exc}") from exc
        return files

    def _expand_7z(self, snapshot: VersionSnapshot, destination: Path) -> int:
        archive = str(snapshot.archive_path)
        listing = self._run_7z(
            snapshot, [self.seven_zip, "l", "-slt", archive], "corrupt archive"
        )
        entries = _parse_7z_listing(listing)
        for name, attributes in entries:
            mode = attributes.partition(" ")[2]
            if mode.startswith("l"):
                raise ExpandError(snapshot, f"unsupported member type for '{name}'")
        members = [(name, _is_7z_dir(attributes)) for name, attributes in entries]
        files = self._check_members(snapshot, destination, members)

        scratch = destination.parent / f".{destination.name}.extracting"
        if scratch.exists():
            shutil.rmtree(scratch)
        scratch.mkdir(parents=True)
        try:
            self._run_7z(
                snapshot, [self.seven_zip, "x", "-y", f"-o{scratch}", archive], "extraction failed"
            )
            for path in sorted(scratch.rglob("*")):
                if path.is_symlink():
                    raise ExpandError(snapshot, f"unsupported member type for '{path.name}'")
            destination.mkdir(parents=True, exist_ok=True)
            for path in sorted(scratch.rglob("*")):
                target = destination / path.relative_to(scratch)
                if path.is_dir():
                    target.mkdir(parents=True, exist_ok=True)
                else:
                    target.parent.mkdir(parents=True, exist_ok=True)
                    shutil.move(str(path), target)
        except OSError as exc:
            raise ExpandError(snapshot, f"extraction failed: {exc}") from exc
        finally:
            shutil.rmtree(scratch, ignore_errors=True)
        return files

    def _run_7z(self, snapshot: VersionSnapshot, args: List[str], failure: str) -> str:
        self.logger.debug("Running %s", " ".join(args))
        try:
            return self._runner(args, cwd=snapshot.archive_path.parent, capture_output=True)
        except subprocess.CalledProcessError as exc:
            detail = (exc.stderr or exc.stdout or "").strip()
            cause = f"{failure}: {args[0]} exited with status {exc.returncode}"
            if detail:
                cause = f"{cause}: {detail.splitlines()[-1]}"
            raise ExpandError(snapshot, cause) from exc
        except OSError as exc:
            raise ExpandError(snapshot, f"could not start {args[0]}: {exc}") from exc

    # ------------------------------------------------------------------
    # Helpers

    @staticmethod
    def _check_members(
        snapshot: VersionSnapshot,
        destination: Path,
        members: List[Tuple[str, bool]],
    ) -> int:
        conflicts: List[str] = []
        files = 0
        for raw_name, is_dir in members:
            member = PurePosixPath(raw_name.replace("\\", "/"))
            if member.is_absolute() or ".." in member.parts:
                raise ExpandError(snapshot, f"member '{raw_name}' escapes the destination")
            if is_dir:
                continue
            files += 1
            target = destination.joinpath(*member.parts)
            if target.exists() or target.is_symlink():
                conflicts.append(member.as_posix())
        if conflicts:
            preview = ", ".join(conflicts[:5])
            more = f" and {len(conflicts) - 5} more" if len(conflicts) > 5 else ""
            raise ExpandError(snapshot, f"destination already contains {preview}{more}")
        if files == 0:
            raise ExpandError(snapshot, "archive contains no files")
        return files


def _parse_7z_listing(output: str) -> List[Tuple[str, str]]:
    """Return ``(path, attributes)`` for each member of a ``7z l -slt`` listing."""
    entries: List[Tuple[str, str]] = []
    _, marker, body = output.partition("\n----------")
    if not marker:
        return entries
    for block in body.split("\n\n"):
        fields: Dict[str, str] = {}
        for line in block.splitlines():
            key, sep, value = line.partition(" = ")
            if sep:
                fields[key.strip()] = value.strip()
        if "Path" not in fields:
            continue
        attributes = fields.get("Attributes", "")
        if fields.get("Folder") == "+" and not attributes.startswith("D"):
            attributes = f"D{attributes}"
        entries.append((fields["Path"], attributes))
    return entries


def _is_7z_dir(attributes: str) -> bool:
    return attributes.startswith("D")


__all__ = ["ArchiveExpander"]
