"""Source checkout through the git command line."""

from __future__ import annotations

import shutil
import tempfile
from pathlib import Path

from shipline.collaborators.command import CommandError, Runner
from shipline.observability.logging import get_logger
from shipline.pipeline.errors import CheckoutFailure

log = get_logger(__name__)


class GitCheckout:
    """Check out a revision either in place or into a fresh clone.

    - With ``repository`` set, every run clones into a temporary directory
      under ``workdir`` and release() deletes it afterwards.
    - Without it, the project directory is the workspace (as in a CI job
      whose SCM step already ran) and release() leaves it alone.
    """

    def __init__(
        self,
        runner: Runner,
        repository: str | None = None,
        workdir: Path | None = None,
        git: str = "git",
    ) -> None:
        self._runner = runner
        self._repository = repository
        self._workdir = workdir
        self._git = git
        self._temporary: set[Path] = set()

    async def checkout(self, source_dir: Path, revision: str | None) -> Path:
        if self._repository:
            workspace = await self._clone()
        else:
            workspace = source_dir
            if not workspace.is_dir():
                raise CheckoutFailure(f"source directory does not exist: {workspace}")

        if revision:
            try:
                await self._git_ok(
                    ["-C", str(workspace), "checkout", "--quiet", "--detach", revision],
                    f"cannot check out revision {revision}",
                )
            except CheckoutFailure:
                await self.release(workspace)
                raise

        log.info("checkout_complete", workspace=str(workspace), revision=revision)
        return workspace

    async def _clone(self) -> Path:
        if self._workdir is not None:
            self._workdir.mkdir(parents=True, exist_ok=True)
        workspace = Path(tempfile.mkdtemp(prefix="shipline_", dir=self._workdir))
        try:
            await self._git_ok(
                ["clone", "--quiet", str(self._repository), str(workspace)],
                f"cannot clone {self._repository}",
            )
        except CheckoutFailure:
            shutil.rmtree(workspace, ignore_errors=True)
            raise
        self._temporary.add(workspace)
        return workspace

    async def _git_ok(self, args: list[str], message: str) -> None:
        try:
            result = await self._runner.run([self._git, *args])
        except CommandError as e:
            raise CheckoutFailure(f"{message}: {e}") from e
        if not result.ok:
            raise CheckoutFailure(f"{message}: {result.output}")

    async def release(self, workspace: Path) -> None:
        if workspace not in self._temporary:
            return
        self._temporary.discard(workspace)
        shutil.rmtree(workspace, ignore_errors=True)
        log.debug("workspace_removed", workspace=str(workspace))
