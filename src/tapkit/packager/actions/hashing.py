"""SHA-1 fingerprints of the final package files, recorded as <Hash> elements."""

from concurrent.futures import ThreadPoolExecutor
import hashlib
from pathlib import Path

from pyvider.telemetry import logger

from ..models import HashDirective, PackageFile, PackageModel
from .base import ActionArgs, PackageAction, register_action

_CHUNK_SIZE = 1024 * 1024


def hash_file(path: Path) -> bytes:
    """SHA-1 digest of the file at `path`, or empty bytes if it cannot be read."""
    sha1 = hashlib.sha1()
    try:
        with Path(path).open("rb") as f:
            while chunk := f.read(_CHUNK_SIZE):
                sha1.update(chunk)
    except FileNotFoundError:
        return b""
    except OSError as e:
        logger.error(f"Could not hash '{path}': {e}")
        return b""
    return sha1.digest()


def hash_directive(digest: bytes) -> HashDirective:
    return HashDirective(digest.hex().upper())


def compute_package_hash(package: PackageModel) -> str:
    """Fingerprint of the whole package, derived from the file hashes."""
    lines = [f"{package.name}:{package.version}"]
    for file in sorted(package.files, key=lambda f: f.relative_destination_path):
        directive = file.get_directive(HashDirective)
        lines.append(f"{file.relative_destination_path}:{directive.value if directive else ''}")
    return hashlib.sha1("\n".join(lines).encode("utf-8")).hexdigest().upper()


@register_action
class FileHashAction(PackageAction):
    order = 1001

    def execute(self, package: PackageModel, args: ActionArgs) -> bool:
        def stamp(file: PackageFile) -> None:
            directive = hash_directive(hash_file(file.source_path))
            file.remove_directive(HashDirective)
            file.custom_data.append(directive)

        with ThreadPoolExecutor() as executor:
            list(executor.map(stamp, package.files))

        if not package.package_hash:
            package.package_hash = compute_package_hash(package)
        return True
