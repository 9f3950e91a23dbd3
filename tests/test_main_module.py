"""Running `tapkit.packager` with `python -m` starts tappkg."""

import runpy
from unittest.mock import patch


def test_main_module_entrypoint() -> None:
    """The package's `__main__` hands control to the tappkg click group."""
    with patch("tapkit.packager.cli.cli") as mock_cli:
        runpy.run_module("tapkit.packager", run_name="__main__")
    mock_cli.assert_called_once()
