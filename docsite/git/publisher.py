"""Git publishing of the merged site to a hosting branch."""

from __future__ import annotations

import os
import shutil
import subprocess
from datetime import UTC, datetime
from pathlib import Path
from typing import Callable, Iterable, List

from ..builder import Runner, run_command
from ..errors import PublishError
from ..logging import get_logger
from ..models import MergedTree, PublishResult, PublishState, PublishTarget

Prompt = Callable[[str], str]
Clock = Callable[[], datetime]

CONFIRMATION_PROMPT = "Are you sure you want to proceed? (y/n): "
_CLONE_DIRNAME = "copy"


def _utc_now() -> datetime:
    return datetime.now(UTC)


class Publisher:
    """Replaces the hosting branch with the merged tree, after explicit confirmation.

    The hosting branch is a derived artifact: its history is rewritten with a
    forced push on every publish. Nothing is retried; once the operator confirms,
    any failing step raises :class:`PublishError` carrying the state it failed in.
    """

    def __init__(
        self,
        runner: Runner | None = None,
        prompt: Prompt | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._runner = runner or run_command
        self._prompt = prompt or input
        self._clock = clock or _utc_now
        self.logger = get_logger("publisher")

    def publish(self, tree: MergedTree, target: PublishTarget, workdir: Path) -> PublishResult:
        if not tree.root_dir.is_dir():
            raise PublishError("missing tree")

        history: List[PublishState] = [PublishState.AWAITING_CONFIRMATION]
        if not self._confirm():
            history.append(PublishState.CANCELLED)
            self.logger.info("Publish cancelled by operator; remote left untouched")
            return PublishResult(state=PublishState.CANCELLED, history=history)

        history.append(PublishState.CLONING)
        copy_dir = self._clone(target, workdir)

        history.append(PublishState.REPLACING)
        self._replace(tree.root_dir, copy_dir, target.preserved_paths)

        history.append(PublishState.COMMITTING)
        message = self.commit_message()
        self._commit(copy_dir, message)

        history.append(PublishState.PUSHING_FORCED)
        self._push(copy_dir, target)

        history.append(PublishState.DONE)
        self.logger.info("Published to %s", target.branch_name)
        return PublishResult(state=PublishState.DONE, history=history, commit_message=message)

    def commit_message(self) -> str:
        stamp = self._clock().astimezone(UTC).strftime("%Y-%m-%d %H:%M:%S UTC")
        return f"Deploy documentation on {stamp}"

    # ------------------------------------------------------------------
    # States

    def _confirm(self) -> bool:
        try:
            answer = self._prompt(CONFIRMATION_PROMPT)
        except EOFError:
            return False
        return answer.strip() in {"y", "Y"}

    def _clone(self, target: PublishTarget, workdir: Path) -> Path:
        state = PublishState.CLONING
        try:
            if workdir.exists():
                shutil.rmtree(workdir)
            workdir.mkdir(parents=True)
        except OSError as exc:
            raise PublishError(f"cannot prepare {workdir}: {exc}", state) from exc

        copy_dir = workdir / _CLONE_DIRNAME
        self.logger.info("Cloning %s (%s)", target.remote_url, target.branch_name)
        self._run(
            ["git", "clone", "-b", target.branch_name, target.remote_url, str(copy_dir)],
            cwd=workdir,
            state=state,
        )
        if not (copy_dir / ".git").exists():
            raise PublishError(f"clone did not produce a working copy at {copy_dir}", state)
        return copy_dir

    def _replace(self, source: Path, copy_dir: Path, preserved: Iterable[str]) -> None:
        state = PublishState.REPLACING
        keep = {".git", *preserved}
        try:
            for entry in sorted(copy_dir.iterdir()):
                if entry.name in keep:
                    continue
                if entry.is_dir() and not entry.is_symlink():
                    shutil.rmtree(entry)
                else:
                    entry.unlink()

            for path in sorted(source.rglob("*")):
                relative = path.relative_to(source)
                if relative.parts[0] in keep:
                    if path.is_file():
                        self.logger.warning(
                            "Not overwriting preserved path %s with built content",
                            relative.as_posix(),
                        )
                    continue
                destination = copy_dir / relative
                if path.is_dir():
                    destination.mkdir(parents=True, exist_ok=True)
                else:
                    destination.parent.mkdir(parents=True, exist_ok=True)
                    shutil.copy2(path, destination)
        except OSError as exc:
            raise PublishError(f"cannot replace working copy: {exc}", state) from exc

    def _commit(self, copy_dir: Path, message: str) -> None:
        state = PublishState.COMMITTING
        env = os.environ.copy()
        env.setdefault("GIT_AUTHOR_NAME", "docsite")
        env.setdefault("GIT_AUTHOR_EMAIL", "docsite@example.com")
        env.setdefault("GIT_COMMITTER_NAME", env["GIT_AUTHOR_NAME"])
        env.setdefault("GIT_COMMITTER_EMAIL", env["GIT_AUTHOR_EMAIL"])
        self._run(["git", "add", "--all"], cwd=copy_dir, state=state)
        self._run(
            ["git", "commit", "--allow-empty", "-m", message], cwd=copy_dir, state=state, env=env
        )

    def _push(self, copy_dir: Path, target: PublishTarget) -> None:
        self.logger.info("Force-pushing %s", target.branch_name)
        self._run(
            ["git", "push", "origin", target.branch_name, "--force"],
            cwd=copy_dir,
            state=PublishState.PUSHING_FORCED,
        )

    # ------------------------------------------------------------------
    # Helpers

    def _run(
        self,
        args: List[str],
        *,
        cwd: Path,
        state: PublishState,
        env: dict[str, str] | None = None,
    ) -> str:
        try:
            return self._runner(args, cwd=cwd, env=env, capture_output=True)
        except subprocess.CalledProcessError as exc:
            detail = (exc.stderr or exc.stdout or "").strip()
            reason = f"`{' '.join(args[:2])}` exited with status {exc.returncode}"
            if detail:
                reason = f"{reason}: {detail.splitlines()[-1]}"
            raise PublishError(reason, state) from exc
        except OSError as exc:
            raise PublishError(f"cannot run {args[0]}: {exc}", state) from exc


__all__ = ["CONFIRMATION_PROMPT", "Publisher"]
