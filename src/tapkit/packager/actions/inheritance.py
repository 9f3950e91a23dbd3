"""
Inherits package dependencies from XML files marked with <IncludePackageDependencies/>.

The file is searched for

    <Package.Dependencies>
        <Package Name="a" Version="b"/>
    </Package.Dependencies>

and each entry is merged into the package's own dependency list.
"""

from pathlib import Path
import xml.etree.ElementTree as ET

from pyvider.telemetry import logger

from ..exceptions import PackageDefinitionError
from ..models import IncludePackageDependenciesDirective, PackageDependency, PackageModel
from ..versioning import SemanticVersion, VersionSpecifier
from .base import ActionArgs, PackageAction, register_action


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _is_any(raw_version: str | None) -> bool:
    return raw_version is None or not raw_version.strip() or raw_version.strip().lower() == "any"


def inherited_dependencies(path: Path) -> list[ET.Element]:
    try:
        root = ET.parse(path).getroot()
    except (ET.ParseError, OSError) as e:
        raise PackageDefinitionError(f"File '{path}' is not a valid XML document: {e}") from e
    return [
        child
        for node in root.iter()
        if _local(node.tag) == "Package.Dependencies"
        for child in node
        if _local(child.tag) == "Package"
    ]


def _parse_entry(element: ET.Element) -> tuple[PackageDependency, SemanticVersion | None]:
    name = element.get("Name")
    if not name or not name.strip():
        raise ValueError(f"Attribute 'Name' is not set. ({ET.tostring(element, encoding='unicode').strip()})")

    raw_version = element.get("Version")
    if _is_any(raw_version):
        return PackageDependency(name, VersionSpecifier.ANY, "any"), None

    raw_version = raw_version.strip()
    plain = raw_version.removeprefix("^")
    try:
        specifier = VersionSpecifier.parse("^" + plain)
        semver = SemanticVersion.parse(plain)
    except ValueError as e:
        raise ValueError(
            f"Attribute 'Version' of '{name}' is not a valid version specifier: {e}"
        ) from e
    return PackageDependency(name, specifier, raw_version), semver


def merge_dependency(
    package: PackageModel, dependency: PackageDependency, semver: SemanticVersion | None
) -> bool:
    """Adds `dependency`, keeping whichever of two compatible requirements is stricter."""
    existing = package.get_dependency(dependency.name)
    if existing is None:
        package.dependencies.append(dependency)
        return True

    this_any = semver is None
    other_any = _is_any(existing.raw_version)
    other_semver = (
        None if other_any else SemanticVersion.try_parse(existing.raw_version.removeprefix("^"))
    )

    if this_any or (other_semver is not None and dependency.version.is_compatible(other_semver)):
        return False
    if other_any or existing.version is None or existing.version.is_compatible(semver):
        package.remove_dependency(existing.name)
        package.dependencies.append(dependency)
        return True
    raise ValueError(
        f"Dependency conflict: {dependency.name} v. '{dependency.raw_version}' and "
        f"'{existing.raw_version}' are mutually exclusive."
    )


@register_action
class IncludePackageDependenciesAction(PackageAction):
    order = 10

    def execute(self, package: PackageModel, args: ActionArgs) -> bool:
        errors: list[str] = []
        changed = False
        for file in package.files:
            if not file.has_directive(IncludePackageDependenciesDirective):
                continue

            entries = inherited_dependencies(file.source_path)
            if entries:
                logger.info(f"Inheriting package dependencies from {file.source_path}:")
            for element in entries:
                try:
                    dependency, semver = _parse_entry(element)
                    changed = merge_dependency(package, dependency, semver) or changed
                except ValueError as e:
                    logger.error(str(e))
                    errors.append(str(e))

            file.remove_directive(IncludePackageDependenciesDirective)

        if errors:
            raise PackageDefinitionError("\n".join(errors))
        return changed
