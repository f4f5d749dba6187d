"""Site generator invocation for a single documentation project."""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path
from typing import Callable, Iterable, Sequence

from .config import DEFAULT_BUILD_COMMAND
from .errors import BuildError
from .logging import get_logger
from .models import BuildOutput, Project

Runner = Callable[..., str]

_GENERATOR_CONFIG = "mkdocs.yml"


class ProjectBuilder:
    """Runs ``mkdocs build`` for a project into a dedicated output directory."""

    def __init__(
        self,
        command: Sequence[str] = DEFAULT_BUILD_COMMAND,
        runner: Runner | None = None,
    ) -> None:
        self.command = list(command)
        self._runner = runner or run_command
        self.logger = get_logger("builder")

    def build(self, project: Project, output_dir: Path) -> BuildOutput:
        """Build ``project`` into ``output_dir`` and return the resulting output."""
        source = project.source_dir
        if not source.is_dir():
            raise BuildError(project, f"source directory {source} does not exist")
        if not (source / _GENERATOR_CONFIG).is_file():
            raise BuildError(project, f"{_GENERATOR_CONFIG} not found in {source}")

        output_dir = output_dir.resolve()
        if output_dir.exists():
            shutil.rmtree(output_dir)
        output_dir.parent.mkdir(parents=True, exist_ok=True)

        args = [*self.command, "--site-dir", str(output_dir)]
        self.logger.info("Building project %s", project.name)
        self.logger.debug("Running %s in %s", " ".join(args), source)
        try:
            output = self._runner(args, cwd=source, capture_output=True)
        except subprocess.CalledProcessError as exc:
            detail = (exc.stderr or exc.stdout or "").strip()
            cause = f"generator exited with status {exc.returncode}"
            if detail:
                cause = f"{cause}: {detail.splitlines()[-1]}"
            raise BuildError(project, cause) from exc
        except OSError as exc:
            raise BuildError(project, f"could not start generator: {exc}") from exc

        if output:
            self.logger.debug("%s", output.rstrip())

        if not output_dir.is_dir():
            raise BuildError(project, f"generator produced no output directory at {output_dir}")
        file_count = sum(1 for path in output_dir.rglob("*") if path.is_file())
        if file_count == 0:
            raise BuildError(project, f"generator produced an empty output directory at {output_dir}")

        self.logger.debug("Project %s produced %d files", project.name, file_count)
        return BuildOutput(project=project, root_dir=output_dir, file_count=file_count)


def run_command(
    args: Iterable[str],
    *,
    cwd: Path,
    env: dict[str, str] | None = None,
    capture_output: bool = False,
) -> str:
    """Run an external command, raising ``CalledProcessError`` on failure."""
    completed = subprocess.run(
        list(args),
        cwd=str(cwd),
        env=env,
        check=True,
        text=True,
        capture_output=capture_output,
    )
    if capture_output:
        return completed.stdout
    return ""


__all__ = ["ProjectBuilder", "Runner", "run_command"]
