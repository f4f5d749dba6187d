"""Tests for the hosting-branch publisher."""

from __future__ import annotations

import subprocess
from datetime import UTC, datetime
from pathlib import Path
from typing import List

import pytest

from docsite.errors import PublishError
from docsite.git.publisher import CONFIRMATION_PROMPT, Publisher
from docsite.models import MergedTree, PublishState, PublishTarget
from tests._fixtures.site_builder import read_tree

TARGET = PublishTarget(
    remote_url="git@github.com:Neoteroi/neoteroi.github.io.git",
    branch_name="gh-pages",
    preserved_paths=frozenset({"CNAME", "README.md"}),
)

REMOTE_FILES = {
    "CNAME": "www.neoteroi.dev\n",
    "README.md": "# GitHub Pages branch\n",
    "index.html": "old home",
    "blacksheep/index.html": "old blacksheep",
    "legacy/page.html": "removed long ago",
}


class FakeGit:
    """Records git invocations and materialises a working copy on clone."""

    def __init__(self, fail_on: str | None = None) -> None:
        self.calls: List[tuple[List[str], Path]] = []
        self.fail_on = fail_on
        self.snapshot_at_commit: dict[str, bytes] | None = None

    def __call__(self, args, *, cwd, env=None, capture_output=False):  # type: ignore[no-untyped-def]
        argv = list(args)
        self.calls.append((argv, Path(cwd)))
        if self.fail_on and argv[1] == self.fail_on:
            raise subprocess.CalledProcessError(128, argv, output="", stderr="fatal: remote rejected")
        if argv[1] == "clone":
            copy_dir = Path(argv[-1])
            (copy_dir / ".git").mkdir(parents=True)
            (copy_dir / ".git" / "HEAD").write_text("ref: refs/heads/gh-pages\n", encoding="utf-8")
            for relative, content in REMOTE_FILES.items():
                path = copy_dir / relative
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(content, encoding="utf-8")
        if argv[1] == "commit":
            self.snapshot_at_commit = read_tree(Path(cwd))
        return ""

    @property
    def commands(self) -> List[str]:
        return [argv[1] for argv, _ in self.calls]


def _tree(tmp_path: Path) -> MergedTree:
    root = tmp_path / "site"
    for relative, content in {
        "index.html": "new home",
        "blacksheep/index.html": "new blacksheep",
        "blacksheep/v1/index.html": "v1",
    }.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return MergedTree(root_dir=root)


def _clock() -> datetime:
    return datetime(2024, 5, 1, 12, 30, 5, tzinfo=UTC)


def test_publish_missing_tree_fails_before_prompt(tmp_path: Path) -> None:
    prompts: List[str] = []
    git = FakeGit()
    publisher = Publisher(runner=git, prompt=lambda text: prompts.append(text) or "y")

    with pytest.raises(PublishError, match="missing tree") as excinfo:
        publisher.publish(MergedTree(root_dir=tmp_path / "site"), TARGET, tmp_path / "deploy")

    assert excinfo.value.reason == "missing tree"
    assert prompts == []
    assert git.calls == []
    assert not (tmp_path / "deploy").exists()


@pytest.mark.parametrize("answer", ["n", "N", "", "yes please", "no"])
def test_publish_declined_is_noop(tmp_path: Path, answer: str) -> None:
    git = FakeGit()
    publisher = Publisher(runner=git, prompt=lambda text: answer)

    result = publisher.publish(_tree(tmp_path), TARGET, tmp_path / "deploy")

    assert result.cancelled
    assert result.history == [PublishState.AWAITING_CONFIRMATION, PublishState.CANCELLED]
    assert result.commit_message is None
    assert git.calls == []


def test_publish_eof_on_prompt_cancels(tmp_path: Path) -> None:
    def closed_stdin(text: str) -> str:
        raise EOFError

    result = Publisher(runner=FakeGit(), prompt=closed_stdin).publish(
        _tree(tmp_path), TARGET, tmp_path / "deploy"
    )

    assert result.state is PublishState.CANCELLED


def test_publish_confirmed_runs_full_state_machine(tmp_path: Path) -> None:
    git = FakeGit()
    prompts: List[str] = []

    def confirm(text: str) -> str:
        prompts.append(text)
        return "Y"

    result = Publisher(runner=git, prompt=confirm, clock=_clock).publish(
        _tree(tmp_path), TARGET, tmp_path / "deploy"
    )

    assert prompts == [CONFIRMATION_PROMPT]
    assert result.state is PublishState.DONE
    assert result.history == [
        PublishState.AWAITING_CONFIRMATION,
        PublishState.CLONING,
        PublishState.REPLACING,
        PublishState.COMMITTING,
        PublishState.PUSHING_FORCED,
        PublishState.DONE,
    ]
    assert result.commit_message == "Deploy documentation on 2024-05-01 12:30:05 UTC"

    copy_dir = tmp_path / "deploy" / "copy"
    assert git.calls[0][0] == ["git", "clone", "-b", "gh-pages", TARGET.remote_url, str(copy_dir)]
    assert git.calls[1][0] == ["git", "add", "--all"]
    assert git.calls[2][0] == ["git", "commit", "--allow-empty", "-m", result.commit_message]
    assert git.calls[3][0] == ["git", "push", "origin", "gh-pages", "--force"]
    assert all(cwd == copy_dir for _, cwd in git.calls[1:])


def test_publish_replace_keeps_only_preserved_paths(tmp_path: Path) -> None:
    git = FakeGit()
    tree = _tree(tmp_path)

    Publisher(runner=git, prompt=lambda text: "y", clock=_clock).publish(
        tree, TARGET, tmp_path / "deploy"
    )

    committed = {key: value for key, value in git.snapshot_at_commit.items() if not key.startswith(".git/")}
    expected = {key: value for key, value in read_tree(tree.root_dir).items()}
    expected["CNAME"] = REMOTE_FILES["CNAME"].encode()
    expected["README.md"] = REMOTE_FILES["README.md"].encode()
    assert committed == expected
    assert not (tmp_path / "deploy" / "copy" / "legacy").exists()
    assert (tmp_path / "deploy" / "copy" / ".git" / "HEAD").exists()


def test_publish_never_overwrites_preserved_files(tmp_path: Path) -> None:
    tree = _tree(tmp_path)
    (tree.root_dir / "CNAME").write_text("wrong.example.com\n", encoding="utf-8")

    Publisher(runner=FakeGit(), prompt=lambda text: "y").publish(tree, TARGET, tmp_path / "deploy")

    cname = tmp_path / "deploy" / "copy" / "CNAME"
    assert cname.read_text(encoding="utf-8") == REMOTE_FILES["CNAME"]


def test_publish_recreates_workdir(tmp_path: Path) -> None:
    workdir = tmp_path / "deploy"
    (workdir / "copy" / "junk").mkdir(parents=True)

    Publisher(runner=FakeGit(), prompt=lambda text: "y").publish(_tree(tmp_path), TARGET, workdir)

    assert not (workdir / "copy" / "junk").exists()


@pytest.mark.parametrize(
    ("failing", "state"),
    [
        ("clone", PublishState.CLONING),
        ("commit", PublishState.COMMITTING),
        ("push", PublishState.PUSHING_FORCED),
    ],
)
def test_publish_failure_after_confirmation_is_fatal(
    tmp_path: Path, failing: str, state: PublishState
) -> None:
    git = FakeGit(fail_on=failing)

    with pytest.raises(PublishError, match="remote rejected") as excinfo:
        Publisher(runner=git, prompt=lambda text: "y").publish(_tree(tmp_path), TARGET, tmp_path / "deploy")

    assert excinfo.value.state is state
    assert git.commands.count(failing) == 1
    assert git.commands[-1] == failing
