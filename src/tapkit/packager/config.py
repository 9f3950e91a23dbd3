"""Build settings from the [tool.tappkg] table of a project's pyproject.toml."""

import os
from pathlib import Path
import tomllib
from typing import Any

from attrs import define, evolve, field

from .exceptions import ArgumentError

INSTALL_DIR_ENV = "TAPPKG_INSTALL_DIR"
OBFUSCATORS = ("obfuscar", "dotfuscator")


@define(frozen=True)
class PackagerConfig:
    project_dir: Path
    installation_dir: Path
    obfuscator: str | None = None
    exclude_modules: frozenset[str] = field(factory=frozenset, converter=frozenset)

    def with_overrides(self, **overrides: Any) -> "PackagerConfig":
        """Applies command-line values; None leaves a setting alone."""
        return evolve(self, **{k: v for k, v in overrides.items() if v is not None})


def _read_table(pyproject: Path) -> dict[str, Any]:
    if not pyproject.is_file():
        return {}
    with pyproject.open("rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ArgumentError(f"Could not parse '{pyproject}': {e}") from e
    return data.get("tool", {}).get("tappkg", {})


def load_config(project_dir: Path) -> PackagerConfig:
    project_dir = Path(project_dir).resolve()
    conf = _read_table(project_dir / "pyproject.toml")

    installation_dir = os.environ.get(INSTALL_DIR_ENV) or conf.get("installation_dir")
    obfuscator = conf.get("obfuscator")
    if obfuscator is not None and obfuscator.lower() not in OBFUSCATORS:
        raise ArgumentError(
            f"Unknown obfuscator '{obfuscator}' in [tool.tappkg]. "
            f"Choose one of: {', '.join(OBFUSCATORS)}."
        )
    exclude = conf.get("exclude_modules", [])
    if not isinstance(exclude, list):
        raise ArgumentError("'exclude_modules' in [tool.tappkg] must be a list of module names.")

    return PackagerConfig(
        project_dir=project_dir,
        installation_dir=(project_dir / installation_dir).resolve()
        if installation_dir
        else project_dir,
        obfuscator=obfuscator.lower() if obfuscator else None,
        exclude_modules=exclude,
    )
