"""Access to the packages installed in an installation directory."""

from pathlib import Path

from pyvider.telemetry import logger

from .exceptions import BuildError
from .models import PACKAGE_DEFINITION_DIR, PACKAGE_DEFINITION_FILE, PackageModel
from .packaging.manifest import load_manifest, write_manifest


class Installation:
    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory).resolve()
        self._packages: list[PackageModel] | None = None

    @property
    def packages_dir(self) -> Path:
        return self.directory / PACKAGE_DEFINITION_DIR

    def definition_path(self, package_name: str) -> Path:
        return self.packages_dir / package_name / PACKAGE_DEFINITION_FILE

    def get_packages(self) -> list[PackageModel]:
        """
        Returns the installed packages ordered by name. Installed file paths
        resolve against the installation directory.
        """
        if self._packages is None:
            packages: dict[str, PackageModel] = {}
            if self.packages_dir.is_dir():
                for definition in sorted(self.packages_dir.rglob(PACKAGE_DEFINITION_FILE)):
                    try:
                        pkg = load_manifest(definition, base_dir=self.directory, variables={})
                    except BuildError as e:
                        logger.warning(f"Skipping unreadable package definition '{definition}': {e}")
                        continue
                    packages.setdefault(pkg.name, pkg)
            self._packages = sorted(packages.values(), key=lambda p: p.name)
        return list(self._packages)

    def find_package(self, name: str) -> PackageModel | None:
        return next((p for p in self.get_packages() if p.name == name), None)

    def install_definition(self, pkg: PackageModel) -> Path:
        """Registers `pkg` as installed by writing its definition."""
        path = self.definition_path(pkg.name)
        write_manifest(pkg, path)
        self._packages = None
        logger.info(f"Installed '{pkg.name}' ({path})")
        return path
