"""Verification of installed packages against the file hashes recorded when they were built."""

import enum
from pathlib import Path

from attrs import define, field
from pyvider.telemetry import logger

from .actions.hashing import hash_file
from .models import BUNDLED_DEPENDENCIES_DIR, HashDirective, PackageFile, PackageModel


class FileStatus(enum.Enum):
    VERIFIED = "verified"
    MISSING = "is missing."
    CHECKSUM_MISMATCH = "has non-matching checksum."
    MISSING_CHECKSUM = "is missing checksum information."


@define(frozen=True)
class FileVerification:
    path: str
    status: FileStatus


@define
class PackageVerification:
    package: str
    files: list[FileVerification] = field(factory=list)

    @property
    def failures(self) -> list[FileVerification]:
        return [
            f
            for f in self.files
            if f.status in (FileStatus.MISSING, FileStatus.CHECKSUM_MISMATCH)
        ]

    @property
    def inconclusive(self) -> bool:
        return any(f.status is FileStatus.MISSING_CHECKSUM for f in self.files)

    @property
    def ok(self) -> bool:
        return not self.failures


def verify_file(file: PackageFile, root: Path) -> FileStatus:
    recorded = file.get_directive(HashDirective)
    if recorded is None:
        return FileStatus.MISSING_CHECKSUM

    full_path = root / file.relative_destination_path.replace("\\", "/")
    if not full_path.is_file():
        return FileStatus.MISSING
    try:
        matches = recorded.digest() == hash_file(full_path)
    except ValueError:
        return FileStatus.MISSING_CHECKSUM
    return FileStatus.VERIFIED if matches else FileStatus.CHECKSUM_MISMATCH


def verify_package(pkg: PackageModel, root: Path) -> PackageVerification:
    """Recomputes the hash of every file of `pkg` installed below `root`."""
    logger.debug(f"Verifying package: {pkg.name}")
    result = PackageVerification(package=pkg.name)
    for file in pkg.files:
        status = verify_file(file, root)
        if status is FileStatus.VERIFIED:
            logger.debug(f"Hash matches for '{file.relative_destination_path}'")
        result.files.append(FileVerification(file.relative_destination_path, status))
    return result


def install_conflicts(
    installed: list[PackageModel], new_packages: list[PackageModel]
) -> list[tuple[PackageModel, PackageFile, PackageModel]]:
    """
    Files a new package would overwrite with different content. Returns
    (installed package, file, new package) triples. Files of a package with
    the same name and bundled payload are not conflicts.
    """
    conflicts = []
    for new in new_packages:
        for file in new.files:
            new_hash = file.get_directive(HashDirective)
            if new_hash is None:
                continue
            destination = file.relative_destination_path.replace("\\", "/").lower()
            for pkg in installed:
                if pkg.name == new.name:
                    continue
                for other in pkg.files:
                    other_destination = other.relative_destination_path.replace("\\", "/")
                    if other_destination.lower() != destination:
                        continue
                    if other_destination.startswith(f"{BUNDLED_DEPENDENCIES_DIR}/"):
                        continue
                    other_hash = other.get_directive(HashDirective)
                    if other_hash is None:
                        continue
                    try:
                        differs = not other_hash.matches(new_hash)
                    except ValueError as e:
                        logger.warning(
                            f"Cannot compare '{other_destination}' installed by "
                            f"'{pkg.name}': {e}"
                        )
                        continue
                    if differs:
                        conflicts.append((pkg, other, new))
    return conflicts
