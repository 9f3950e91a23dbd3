"""Writes the package zip container and checks that it can be read back."""

from pathlib import Path
import zipfile

from pyvider.telemetry import logger

from ..exceptions import InvalidArchiveError
from ..models import PackageModel
from .manifest import serialize_manifest
from .reader import PackageReader

_READ_CHUNK = 1024 * 1024


def write_archive(pkg: PackageModel, path: Path) -> Path:
    """Writes every file at its destination plus the resolved package definition."""
    path.parent.mkdir(parents=True, exist_ok=True)
    written: set[str] = set()
    with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for file in pkg.files:
            arcname = file.relative_destination_path.replace("\\", "/")
            if arcname in written:
                raise InvalidArchiveError(f"'{arcname}' is added to the package more than once.")
            archive.write(file.source_path, arcname)
            written.add(arcname)
        if pkg.definition_path in written:
            raise InvalidArchiveError(
                f"'{pkg.definition_path}' is reserved for the package definition."
            )
        archive.writestr(pkg.definition_path, serialize_manifest(pkg))
    logger.debug(f"Wrote {len(written)} files to '{path}'")
    return path


def verify_archive_integrity(path: Path) -> None:
    """Re-opens a written archive: the definition must load and every entry must extract."""
    try:
        PackageReader(path)
        with zipfile.ZipFile(path) as archive:
            names = archive.namelist()
            duplicates = sorted({n for n in names if names.count(n) > 1})
            if duplicates:
                raise InvalidArchiveError(f"Duplicate archive entries: {', '.join(duplicates)}")
            for info in archive.infolist():
                with archive.open(info) as entry:
                    while entry.read(_READ_CHUNK):
                        pass
    except (zipfile.BadZipFile, OSError) as e:
        raise InvalidArchiveError(f"Failed to verify the integrity of '{path}': {e}") from e
    logger.debug(f"Verified integrity of '{path}'")
