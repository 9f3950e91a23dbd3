"""
Locating and running the external executables used by package actions, plus the
file copy helper shared by every action that stages transformed files.
"""

import os
from pathlib import Path
import shutil
import subprocess
import time

from attrs import define, field
from pyvider.telemetry import logger

from .exceptions import MissingToolError, ToolError

COPY_ATTEMPTS = 10
COPY_RETRY_DELAY = 0.01

MODULE_INFO_SUFFIX = ".modinfo.json"


def copy_file(source: Path, destination: Path) -> None:
    """
    Copies a file, retrying while another process holds it open. The last
    failure propagates.
    """
    destination.parent.mkdir(parents=True, exist_ok=True)
    for attempt in range(COPY_ATTEMPTS):
        try:
            shutil.copyfile(source, destination)
            return
        except OSError as e:
            if attempt == COPY_ATTEMPTS - 1:
                raise
            logger.debug(
                "Copy failed, retrying", source=str(source), attempt=attempt, error=str(e)
            )
            time.sleep(COPY_RETRY_DELAY)


def copy_module_info(source: Path, destination: Path) -> None:
    """Gives `destination` the module metadata sidecar of `source`, if it has one."""
    sidecar = source.with_name(source.name + MODULE_INFO_SUFFIX)
    if sidecar.is_file():
        copy_file(sidecar, destination.with_name(destination.name + MODULE_INFO_SUFFIX))


def copy_module(source: Path, destination: Path) -> None:
    """Copies a binary together with its module metadata sidecar."""
    copy_file(source, destination)
    copy_module_info(source, destination)


def unique_path(directory: Path, file_name: str) -> Path:
    """Returns a path in `directory` that no other staged file uses yet."""
    candidate = directory / file_name
    counter = 1
    while candidate.exists():
        candidate = directory / str(counter) / file_name
        counter += 1
    return candidate


def run_subprocess(command: list[str], cwd: Path | str | None = None) -> str:
    logger.info(f"Running command: {' '.join(command)}")
    result = subprocess.run(
        command, capture_output=True, text=True, cwd=cwd, check=False
    )
    if result.returncode != 0:
        error_message = (
            f"Command failed with exit code {result.returncode}.\n"
            f"  Command: {' '.join(command)}\n"
            f"  Stdout:\n{result.stdout.strip()}\n"
            f"  Stderr:\n{result.stderr.strip()}"
        )
        raise ToolError(error_message, stdout=result.stdout, stderr=result.stderr)
    if result.stderr:
        logger.debug("Command stderr", output=result.stderr.strip())
    return result.stdout.strip()


@define
class ExternalTool:
    """An executable looked up on PATH or below the directory in `env_var`."""

    name: str
    executables: tuple[str, ...]
    env_var: str | None = None
    search_dirs: tuple[Path, ...] = field(factory=tuple)

    def find(self) -> Path | None:
        candidates: list[Path] = []
        if self.env_var and (env_dir := os.environ.get(self.env_var)):
            env_path = Path(env_dir)
            if env_path.is_file():
                return env_path
            candidates.extend(env_path / exe for exe in self.executables)
        for directory in self.search_dirs:
            candidates.extend(directory / exe for exe in self.executables)
        for candidate in candidates:
            if candidate.is_file():
                return candidate
        for exe in self.executables:
            if found := shutil.which(exe):
                return Path(found)
        return None

    def ensure(self) -> Path:
        """Returns the executable path or fails the build."""
        path = self.find()
        if path is None:
            hint = f" or set {self.env_var}" if self.env_var else ""
            raise MissingToolError(
                f"{self.name} not found. Install one of "
                f"{', '.join(self.executables)} on PATH{hint}."
            )
        return path

    def run(self, arguments: list[str], cwd: Path | str | None = None) -> str:
        return run_subprocess([str(self.ensure()), *arguments], cwd=cwd)
