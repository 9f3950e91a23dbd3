"""Python-based reader for package archives."""

from pathlib import Path
import xml.etree.ElementTree as ET
import zipfile

from ..exceptions import BuildError, InvalidArchiveError
from ..models import PACKAGE_DEFINITION_DIR, PACKAGE_DEFINITION_FILE, HashDirective, PackageModel
from .manifest import package_from_element


def find_definition_entry(archive: zipfile.ZipFile) -> str:
    """Name of the single Packages/<name>/package.xml entry."""
    entries = [
        name
        for name in archive.namelist()
        if name.startswith(f"{PACKAGE_DEFINITION_DIR}/")
        and name.endswith(f"/{PACKAGE_DEFINITION_FILE}")
        and name.count("/") == 2
    ]
    if len(entries) != 1:
        raise InvalidArchiveError(
            f"Expected exactly one package definition in the archive, found {len(entries)}."
        )
    return entries[0]


class PackageReader:
    """Reads and interprets the package definition embedded in an archive."""

    def __init__(self, package_path: Path) -> None:
        if not package_path.is_file():
            raise FileNotFoundError(f"Package not found at: {package_path}")
        self.package_path = package_path
        self.entries, self.package = self._read_definition()

    def _read_definition(self) -> tuple[list[str], PackageModel]:
        try:
            with zipfile.ZipFile(self.package_path) as archive:
                entry = find_definition_entry(archive)
                root = ET.fromstring(archive.read(entry))
                entries = archive.namelist()
        except (zipfile.BadZipFile, ET.ParseError) as e:
            raise InvalidArchiveError(f"'{self.package_path}' is not a valid package: {e}") from e

        try:
            package = package_from_element(root, self.package_path.parent)
        except BuildError as e:
            raise InvalidArchiveError(f"Package definition validation failed: {e}") from e
        if entry != package.definition_path:
            raise InvalidArchiveError(
                f"Package definition of '{package.name}' is stored at '{entry}'."
            )
        return entries, package

    def get_info(self) -> str:
        """Returns a human-readable string of the package information."""
        p = self.package
        hashed = sum(1 for f in p.files if f.has_directive(HashDirective))
        lines = [
            "Package Information (parsed by Python):",
            f"  Name: {p.name}",
            f"  Version: {p.version}",
            f"  Description: {p.description or '-'}",
            f"  Hash: {p.package_hash or '-'}",
            f"  Files: {len(p.files)} ({hashed} with checksum)",
            "  Dependencies:",
        ]
        lines.extend(f"    - {dep.name} {dep.version or 'Any'}" for dep in p.dependencies)
        if not p.dependencies:
            lines[-1] += " none"
        return "\n".join(lines)
