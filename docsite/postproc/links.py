"""Root-relative link rewriting for relocated (versioned) site trees."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Callable, List

from ..logging import get_logger
from ..models import RewriteReport, SkippedFile


class LinkRewriter:
    """Prefixes root-relative references so a tree keeps working under a sub-path.

    Touched references: ``href``-like HTML attributes, ``srcset`` candidates,
    ``<meta http-equiv="refresh">`` targets and CSS ``url(...)``. External,
    protocol-relative, relative and already-prefixed references are left alone,
    which makes a second pass over the same tree a no-op.

    When the tree was built for a project mounted below the site root, links that
    already point at the project's mount (``/blacksheep/...``) are moved under the
    version instead of being prefixed a second time.
    """

    _ATTR_PATTERN = re.compile(
        r"(?P<lead>\b(?:data-src|href|src|action|poster)\s*=\s*)"
        r"(?P<quote>[\"'])(?P<url>.*?)(?P=quote)",
        re.IGNORECASE,
    )
    _SRCSET_PATTERN = re.compile(
        r"(?P<lead>\bsrcset\s*=\s*)(?P<quote>[\"'])(?P<value>.*?)(?P=quote)",
        re.IGNORECASE,
    )
    _REFRESH_PATTERN = re.compile(
        r"(?P<lead>\bcontent\s*=\s*(?P<quote>[\"'])\s*\d+(?:\.\d+)?\s*[;,]\s*url\s*=\s*)"
        r"(?P<url>[^\"'\s]+)",
        re.IGNORECASE,
    )
    _CSS_URL_PATTERN = re.compile(
        r"(?P<lead>url\(\s*)(?P<quote>[\"']?)(?P<url>[^)\"'\s]+)(?P=quote)(?P<trail>\s*\))",
        re.IGNORECASE,
    )

    HTML_SUFFIXES = frozenset({".html", ".htm"})
    CSS_SUFFIXES = frozenset({".css"})

    def __init__(self) -> None:
        self.logger = get_logger("links")

    def rewrite(
        self, tree_root: Path, version_prefix: str, *, mount_path: str = ""
    ) -> RewriteReport:
        """Rewrite every markup file below ``tree_root`` in place.

        ``mount_path`` is the live mount of the project the tree belongs to; it must
        be an ancestor of ``version_prefix`` to have any effect.
        """
        prefix = normalize_prefix(version_prefix)
        mount = normalize_prefix(mount_path)
        report = RewriteReport(tree_root=tree_root, version_prefix=prefix)
        if not tree_root.is_dir():
            report.skipped.append(SkippedFile(tree_root, "tree root does not exist"))
            return report
        if prefix == "/":
            return report
        if not has_prefix(prefix, mount) or mount == prefix:
            mount = "/"

        for path in sorted(tree_root.rglob("*")):
            suffix = path.suffix.lower()
            if suffix not in self.HTML_SUFFIXES and suffix not in self.CSS_SUFFIXES:
                continue
            if not path.is_file():
                continue
            report.files_scanned += 1
            try:
                original = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                self._skip(report, path, f"unreadable: {exc}")
                continue

            counter: List[int] = [0]
            replace = self._substitution(prefix, mount, counter)
            updated = self._CSS_URL_PATTERN.sub(replace, original)
            if suffix in self.HTML_SUFFIXES:
                updated = self._ATTR_PATTERN.sub(replace, updated)
                updated = self._REFRESH_PATTERN.sub(replace, updated)
                updated = self._SRCSET_PATTERN.sub(
                    self._srcset_substitution(prefix, mount, counter), updated
                )

            if updated == original:
                continue
            try:
                path.write_text(updated, encoding="utf-8")
            except OSError as exc:
                self._skip(report, path, f"unwritable: {exc}")
                continue
            report.files_rewritten += 1
            report.links_rewritten += counter[0]

        self.logger.debug(
            "Rewrote %d links in %d/%d files under %s",
            report.links_rewritten,
            report.files_rewritten,
            report.files_scanned,
            tree_root,
        )
        return report

    def _skip(self, report: RewriteReport, path: Path, reason: str) -> None:
        self.logger.warning("Skipping %s: %s", path, reason)
        report.skipped.append(SkippedFile(path, reason))

    @staticmethod
    def _substitution(
        prefix: str, mount: str, counter: List[int]
    ) -> Callable[[re.Match[str]], str]:
        def _replace(match: re.Match[str]) -> str:
            url = match.group("url")
            rewritten = prefix_url(url, prefix, mount)
            if rewritten == url:
                return match.group(0)
            counter[0] += 1
            start, end = match.span("url")
            whole = match.group(0)
            offset = match.start()
            return f"{whole[:start - offset]}{rewritten}{whole[end - offset:]}"

        return _replace

    @staticmethod
    def _srcset_substitution(
        prefix: str, mount: str, counter: List[int]
    ) -> Callable[[re.Match[str]], str]:
        def _replace(match: re.Match[str]) -> str:
            candidates = []
            changed = 0
            for candidate in match.group("value").split(","):
                stripped = candidate.strip()
                url, _, descriptor = stripped.partition(" ")
                rewritten = prefix_url(url, prefix, mount)
                if rewritten != url:
                    changed += 1
                candidates.append(f"{rewritten} {descriptor}".strip())
            if not changed:
                return match.group(0)
            counter[0] += changed
            quote = match.group("quote")
            return f"{match.group('lead')}{quote}{', '.join(candidates)}{quote}"

        return _replace


def normalize_prefix(version_prefix: str) -> str:
    """Return ``version_prefix`` as ``/segment[/segment...]`` (``/`` when empty)."""
    stripped = "/".join(part for part in version_prefix.split("/") if part)
    return f"/{stripped}"


def has_prefix(url: str, prefix: str) -> bool:
    """Return True when ``url`` is ``prefix`` or a path, query or fragment below it."""
    if prefix == "/":
        return url.startswith("/")
    return url == prefix or url.startswith((f"{prefix}/", f"{prefix}?", f"{prefix}#"))


def prefix_url(url: str, prefix: str, mount: str = "/") -> str:
    """Relocate a single root-relative ``url`` under ``prefix``.

    References already carrying ``prefix`` are returned unchanged. References under
    ``mount`` (an ancestor of ``prefix``) have that part replaced by ``prefix``.
    """
    if not url.startswith("/") or url.startswith("//"):
        return url
    if has_prefix(url, prefix):
        return url
    if mount != "/" and has_prefix(url, mount):
        return f"{prefix}{url[len(mount):]}"
    return f"{prefix}{url}"


__all__ = ["LinkRewriter", "has_prefix", "normalize_prefix", "prefix_url"]
