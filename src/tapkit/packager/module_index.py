"""
Index of the binary modules available on this machine.

A module is a file accompanied by a `<file>.modinfo.json` sidecar describing its
name, version and references. Roots can be searched repeatedly; files that are
copied or transformed later are picked up through `record_at`.
"""

import json
from pathlib import Path

from pyvider.telemetry import logger

from .models import ModuleRecord, ModuleReference
from .tools import MODULE_INFO_SUFFIX
from .versioning import parse_version


def _normalize(path: Path) -> Path:
    return Path(path).resolve()


def read_module_info(path: Path) -> ModuleRecord | None:
    """Reads the sidecar of `path`. Returns None for files that are not modules."""
    sidecar = path.with_name(path.name + MODULE_INFO_SUFFIX)
    if not sidecar.is_file() or not path.is_file():
        return None
    try:
        data = json.loads(sidecar.read_text(encoding="utf-8"))
        references = tuple(
            ModuleReference(ref["name"], parse_version(ref["version"]))
            for ref in data.get("references", [])
        )
        return ModuleRecord(
            name=data.get("name") or path.stem,
            version=parse_version(data["version"]),
            location=_normalize(path),
            references=references,
        )
    except (KeyError, TypeError, ValueError) as e:
        logger.warning(f"Ignoring unreadable module information '{sidecar}': {e}")
        return None


class ModuleIndex:
    def __init__(self) -> None:
        self._records: dict[Path, ModuleRecord] = {}
        self._searched_roots: set[Path] = set()

    @property
    def records(self) -> list[ModuleRecord]:
        return list(self._records.values())

    def __len__(self) -> int:
        return len(self._records)

    def search(self, root: Path) -> list[ModuleRecord]:
        """Indexes every module below `root` and returns the ones found there."""
        root = _normalize(root)
        found: list[ModuleRecord] = []
        if not root.is_dir():
            return found
        for sidecar in sorted(root.rglob(f"*{MODULE_INFO_SUFFIX}")):
            module_path = sidecar.with_name(sidecar.name[: -len(MODULE_INFO_SUFFIX)])
            record = read_module_info(module_path)
            if record is not None:
                self._records[record.location] = record
                found.append(record)
        self._searched_roots.add(root)
        logger.debug(f"Found {len(found)} modules in '{root}'.")
        return found

    def record_at(self, path: Path) -> ModuleRecord | None:
        """Returns the module at `path`, inspecting the file if it was not indexed yet."""
        location = _normalize(path)
        record = self._records.get(location)
        if record is None:
            record = read_module_info(location)
            if record is not None:
                self._records[location] = record
        return record

    def refresh(self, path: Path) -> ModuleRecord | None:
        """Re-reads the module at `path`, e.g. after a transform rewrote it."""
        self._records.pop(_normalize(path), None)
        return self.record_at(path)

    def find(self, name: str) -> list[ModuleRecord]:
        return [r for r in self._records.values() if r.name == name]
