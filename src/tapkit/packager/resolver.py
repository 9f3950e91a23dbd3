"""
Resolution of the binary module references of a package.

Every module referenced by a file in the package must be offered by the package
itself, by a package it depends on, or be bundled into the package as payload.
Resolution repeats until a pass adds nothing new.
"""

from collections.abc import Iterable
from pathlib import Path

from attrs import define, field
from pyvider.telemetry import logger

from .exceptions import ModuleDependencyError, PackageDependencyError
from .models import (
    BUNDLED_DEPENDENCIES_DIR,
    RUNTIME_BASE_MODULES,
    ModuleRecord,
    ModuleReference,
    PackageDependency,
    PackageFile,
    PackageModel,
)
from .module_index import ModuleIndex
from .tools import copy_module
from .versioning import VersionSpecifier, compatible


class PackageModuleCache:
    """Memoizes the modules each package offers. Invalidate after changing files."""

    def __init__(self, index: ModuleIndex) -> None:
        self.index = index
        self._modules: dict[int, tuple[PackageModel, list[ModuleRecord]]] = {}
        self._broken_packages: set[str] = set()

    def modules_of(self, pkg: PackageModel) -> list[ModuleRecord]:
        entry = self._modules.get(id(pkg))
        if entry is None or entry[0] is not pkg:
            entry = (pkg, self._collect(pkg))
            self._modules[id(pkg)] = entry
        return entry[1]

    def invalidate(self, pkg: PackageModel) -> None:
        self._modules.pop(id(pkg), None)

    def _collect(self, pkg: PackageModel) -> list[ModuleRecord]:
        modules: list[ModuleRecord] = []
        for file in pkg.files:
            record = self.index.record_at(file.source_path)
            if record is not None:
                modules.append(record)
            elif not file.source_path.exists() and pkg.name not in self._broken_packages:
                self._broken_packages.add(pkg.name)
                logger.warning(
                    f"Package '{pkg.name}' is not installed correctly? "
                    f"Referenced file '{file.source_path}' was not found."
                )
        return modules


def _bundled_locations(pkg: PackageModel) -> set[Path]:
    prefix = f"{BUNDLED_DEPENDENCIES_DIR}/"
    return {
        Path(f.source_path).resolve()
        for f in pkg.files
        if f.relative_destination_path.replace("\\", "/").startswith(prefix)
    }


@define
class ResolutionResult:
    added_dependencies: list[PackageDependency] = field(factory=list)
    added_files: list[PackageFile] = field(factory=list)
    unresolved: set[str] = field(factory=set)

    @property
    def changed(self) -> bool:
        return bool(self.added_dependencies or self.added_files)


class DependencyResolver:
    def __init__(
        self,
        installed: Iterable[PackageModel],
        index: ModuleIndex,
        excluded: Iterable[str] = (),
        working_dir: Path | None = None,
    ) -> None:
        self.installed = list(installed)
        self.index = index
        self.excluded = set(excluded)
        self.working_dir = working_dir or Path.cwd()
        self.cache = PackageModuleCache(index)

    def resolve(self, pkg: PackageModel) -> ResolutionResult:
        installed = [p for p in self.installed if p.name != pkg.name]
        self.verify_declared_dependencies(pkg, installed)

        result = ResolutionResult()
        found_new = True
        while found_new:
            missing = self._missing_references(pkg, installed, result.unresolved)
            if not missing:
                break

            candidate = self._best_candidate(installed, missing)
            if candidate is not None:
                found_new = self._add_package_dependency(pkg, candidate, missing, result)
            else:
                found_new = self._bundle_modules(pkg, missing, result)
        return result

    def verify_declared_dependencies(
        self, pkg: PackageModel, installed: list[PackageModel]
    ) -> None:
        """Checks the dependencies written in the definition against the installation."""
        for dep in pkg.dependencies:
            installed_pkg = next((p for p in installed if p.name == dep.name), None)
            if installed_pkg is None:
                raise PackageDependencyError(
                    f"Package dependency '{dep.name}' specified in package definition "
                    "is not installed. Please install a compatible version first."
                )
            if dep.version is None:
                dep.version = VersionSpecifier.compatible(installed_pkg.version)
                logger.info(
                    f"A version was not specified for package dependency {dep.name}. "
                    f"Using installed version ({dep.version})."
                )
            elif not dep.version.is_compatible(installed_pkg.version):
                raise PackageDependencyError(
                    f"Installed version of {dep.name} ({installed_pkg.version}) is "
                    f"incompatible with dependency specified in package definition "
                    f"({dep.version})."
                )

    def offered_modules(
        self, pkg: PackageModel, installed: list[PackageModel]
    ) -> list[ModuleRecord]:
        offered: list[ModuleRecord] = []
        for dep in pkg.dependencies:
            specifier = dep.version or VersionSpecifier.ANY
            provider = next(
                (p for p in installed if p.name == dep.name and specifier.is_compatible(p.version)),
                None,
            )
            if provider is not None:
                offered.extend(self.cache.modules_of(provider))
        offered.extend(self.cache.modules_of(pkg))
        return offered

    def _missing_references(
        self, pkg: PackageModel, installed: list[PackageModel], unresolved: set[str]
    ) -> list[ModuleReference]:
        offered = self.offered_modules(pkg, installed)
        missing: dict[ModuleReference, None] = {}
        for file in pkg.files:
            for ref in file.dependent_modules:
                if (
                    ref.name in RUNTIME_BASE_MODULES
                    or ref.name in file.ignored_modules
                    or ref.name in self.excluded
                    or ref.name in unresolved
                ):
                    continue
                if any(
                    m.name == ref.name and compatible(m.version, ref.version) for m in offered
                ):
                    continue
                missing[ref] = None
        return list(missing)

    def _eligible_modules(
        self, candidate: PackageModel, missing: list[ModuleReference]
    ) -> list[ModuleRecord]:
        names = {ref.name for ref in missing}
        # A package cannot satisfy a need with payload it bundled itself.
        bundled = _bundled_locations(candidate)
        return [
            m
            for m in self.cache.modules_of(candidate)
            if m.name in names and m.location not in bundled
        ]

    def _best_candidate(
        self, installed: list[PackageModel], missing: list[ModuleReference]
    ) -> PackageModel | None:
        best: PackageModel | None = None
        best_score = 0
        for candidate in installed:
            score = len(self._eligible_modules(candidate, missing))
            if score > best_score:
                best, best_score = candidate, score
        return best

    def _add_package_dependency(
        self,
        pkg: PackageModel,
        candidate: PackageModel,
        missing: list[ModuleReference],
        result: ResolutionResult,
    ) -> bool:
        satisfied = False
        for module in self._eligible_modules(candidate, missing):
            for required in (ref for ref in missing if ref.name == module.name):
                if not compatible(module.version, required.version):
                    depender = pkg.depender_of(required)
                    who = (
                        f"{depender.file_name} in this package requires"
                        if depender
                        else "This package requires"
                    )
                    logger.error(
                        f"{who} module {required.name} in version {required.version} while "
                        f"that module is already installed through package "
                        f"'{candidate.name}' in version {module.version}."
                    )
                    raise ModuleDependencyError(
                        f"{who} module {required.name} version {required.version}, but "
                        f"package '{candidate.name}' {candidate.version} installs version "
                        f"{module.version}. Please align the version of {required.name} "
                        f"to ensure interoperability with package '{candidate.name}' or "
                        "uninstall that package."
                    )
                logger.info(
                    f"Satisfying module reference to {required.name} by adding "
                    f"dependency on package {candidate.name}"
                )
                if module.version != required.version:
                    logger.warning(
                        f"Version of {required.name} in {candidate.name} is different "
                        f"from the version referenced in this package "
                        f"({required.version} vs {module.version})."
                    )
                satisfied = True

        if not satisfied or pkg.get_dependency(candidate.name) is not None:
            return False

        logger.info(
            f"Adding dependency on package '{candidate.name}' version {candidate.version}"
        )
        dependency = PackageDependency(
            candidate.name, VersionSpecifier.compatible(candidate.version)
        )
        pkg.add_dependency(dependency)
        result.added_dependencies.append(dependency)
        return True

    def _find_payload(self, reference: ModuleReference) -> ModuleRecord | None:
        return next(
            (
                record
                for record in self.index.records
                if record.name == reference.name
                and compatible(record.version, reference.version)
            ),
            None,
        )

    def _bundle_modules(
        self, pkg: PackageModel, missing: list[ModuleReference], result: ResolutionResult
    ) -> bool:
        """No installed package offers the modules; add them as payload."""
        found_new = False
        for reference in missing:
            if reference.name in result.unresolved:
                continue
            record = self._find_payload(reference)
            destination = (
                f"{BUNDLED_DEPENDENCIES_DIR}/{record.location.stem}.{record.version}/"
                f"{record.location.name}"
                if record is not None
                else None
            )
            if record is None or pkg.find_file(destination) is not None:
                logger.warning(
                    f"'{reference.name}' could not be found in any of {len(self.index)} "
                    "searched modules, or is already added."
                )
                result.unresolved.add(reference.name)
                continue

            result.added_files.append(self._add_payload_file(pkg, reference, record, destination))
            self.cache.invalidate(pkg)
            found_new = True
        return found_new

    def _add_payload_file(
        self,
        pkg: PackageModel,
        reference: ModuleReference,
        record: ModuleRecord,
        destination: str,
    ) -> PackageFile:
        depender = pkg.depender_of(reference)
        if depender is None:
            logger.warning(
                f"Adding dependent module '{record.location.name}' to package. "
                "It was not found in any other packages."
            )
        else:
            logger.info(
                f"'{depender.file_name}' depends on '{reference.name}' version "
                f"'{reference.version}'. Adding dependency to package, it was not "
                "found in any other packages."
            )

        # The package claims the file at this location, so make sure it is there.
        target = self.working_dir / destination
        if not target.exists():
            copy_module(record.location, target)

        file = PackageFile(source_path=target, relative_destination_path=destination)
        file.set_dependent_modules(record.references)
        pkg.files.append(file)
        return file
