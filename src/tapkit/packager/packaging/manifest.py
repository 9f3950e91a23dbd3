"""Reading and writing the XML package definition (package.xml)."""

from collections.abc import Mapping
import os
from pathlib import Path
import re
import xml.etree.ElementTree as ET

from pyvider.telemetry import logger

from ..exceptions import PackageDefinitionError, UnhandledDirectiveError
from ..models import (
    Directive,
    HashDirective,
    IncludePackageDependenciesDirective,
    ObfuscateDirective,
    PackageDependency,
    PackageFile,
    PackageModel,
    SetBinaryInfoDirective,
    SignDirective,
)
from ..versioning import SemanticVersion, VersionSpecifier, parse_version

PACKAGE_NAMESPACE = "http://opentap.io/schemas/package"
_MACRO_PATTERN = re.compile(r"\$\((?P<name>[A-Za-z_][A-Za-z0-9_.]*)\)")

ET.register_namespace("", PACKAGE_NAMESPACE)


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _tag(name: str) -> str:
    return f"{{{PACKAGE_NAMESPACE}}}{name}"


def _expand(text: str, variables: Mapping[str, str]) -> str:
    def replace(match: re.Match[str]) -> str:
        value = variables.get(match["name"])
        if value is None:
            return match.group(0)
        logger.debug(f"Expanded '$({match['name']})' -> '{value}'")
        return value

    return _MACRO_PATTERN.sub(replace, text)


def expand_macros(element: ET.Element, variables: Mapping[str, str]) -> None:
    """Replaces $(NAME) in every attribute and text node below `element`."""
    for node in element.iter():
        if node.text:
            node.text = _expand(node.text, variables)
        for key, value in node.attrib.items():
            node.attrib[key] = _expand(value, variables)


def _parse_directives(element: ET.Element, file: PackageFile) -> list[str]:
    unhandled: list[str] = []
    for child in element:
        kind = _local(child.tag)
        directive: Directive | None = None
        if kind == "IgnoreDependency":
            if child.text and child.text.strip():
                file.ignored_modules.add(child.text.strip())
            continue
        if kind == HashDirective.element:
            directive = HashDirective((child.text or "").strip())
        elif kind == SignDirective.element:
            directive = SignDirective(child.get("Certificate", ""))
        elif kind == ObfuscateDirective.element:
            directive = ObfuscateDirective()
        elif kind == IncludePackageDependenciesDirective.element:
            directive = IncludePackageDependenciesDirective()
        elif kind in (SetBinaryInfoDirective.element, "SetAssemblyInfo"):
            attributes = tuple(
                a.strip() for a in child.get("Attributes", "").split(",") if a.strip()
            )
            directive = SetBinaryInfoDirective(attributes)
        else:
            unhandled.append(
                f"Missing handler for XML element '{kind}' on file "
                f"'{file.relative_destination_path}'."
            )
            continue
        file.custom_data.append(directive)
    return unhandled


def _expand_glob(
    destination: str, base_dir: Path, template: PackageFile
) -> list[PackageFile]:
    matches = sorted(p for p in base_dir.glob(destination) if p.is_file())
    if not matches:
        logger.warning(f"Glob pattern '{destination}' did not match any files.")
    return [
        PackageFile(
            source_path=match,
            relative_destination_path=match.relative_to(base_dir).as_posix(),
            ignored_modules=set(template.ignored_modules),
            custom_data=list(template.custom_data),
        )
        for match in matches
    ]


def _parse_dependency(element: ET.Element) -> PackageDependency:
    # <Package Name=""/> is the legacy spelling of <PackageDependency Package=""/>.
    name = element.get("Package") or element.get("Name")
    if not name:
        raise PackageDefinitionError("A package dependency is missing its name.")
    raw_version = element.get("Version")
    version = None
    if raw_version and raw_version.strip():
        try:
            version = VersionSpecifier.parse(raw_version)
        except ValueError as e:
            raise PackageDefinitionError(
                f"Invalid version for dependency '{name}': {e}"
            ) from e
    return PackageDependency(name=name, version=version, raw_version=raw_version)


def package_from_element(root: ET.Element, base_dir: Path) -> PackageModel:
    if _local(root.tag) != "Package":
        raise PackageDefinitionError(
            f"Expected a 'Package' root element, found '{_local(root.tag)}'."
        )
    name = root.get("Name")
    if not name:
        raise PackageDefinitionError("The 'Package' element has no 'Name' attribute.")

    raw_version = root.get("Version")
    if raw_version and raw_version.strip():
        try:
            version = parse_version(raw_version)
        except ValueError as e:
            raise PackageDefinitionError(f"Package '{name}': {e}") from e
    else:
        version = SemanticVersion(0, 0, 0)
        logger.warning(
            f"Package version is {version} due to blank or missing 'Version' "
            "XML attribute in 'Package' element"
        )

    pkg = PackageModel(
        name=name,
        version=version,
        raw_version=raw_version,
        package_hash=root.get("Hash"),
    )

    unhandled: list[str] = []
    for child in root:
        kind = _local(child.tag)
        if kind == "Description":
            pkg.description = (child.text or "").strip() or None
        elif kind == "Dependencies":
            for dep_element in child:
                dependency = _parse_dependency(dep_element)
                if pkg.get_dependency(dependency.name) is not None:
                    raise PackageDefinitionError(
                        f"Dependency '{dependency.name}' is declared more than once."
                    )
                pkg.dependencies.append(dependency)
        elif kind == "Files":
            for file_element in child:
                if _local(file_element.tag) != "File":
                    continue
                destination = file_element.get("Path")
                if not destination:
                    raise PackageDefinitionError(
                        "A 'File' element has no 'Path' attribute."
                    )
                destination = destination.replace("\\", "/")
                source = Path(file_element.get("SourcePath") or destination)
                file = PackageFile(
                    source_path=source if source.is_absolute() else base_dir / source,
                    relative_destination_path=destination,
                )
                unhandled.extend(_parse_directives(file_element, file))
                if "*" in destination and not file_element.get("SourcePath"):
                    pkg.files.extend(_expand_glob(destination, base_dir, file))
                else:
                    pkg.files.append(file)

    if unhandled:
        raise UnhandledDirectiveError("\n".join(unhandled))
    return pkg


def load_manifest(
    path: Path,
    base_dir: Path | None = None,
    variables: Mapping[str, str] | None = None,
) -> PackageModel:
    """
    Loads a package definition. Relative source paths resolve against
    `base_dir` (the manifest's directory by default). Macros are expanded from
    `variables`, or from the environment when not given.
    """
    try:
        root = ET.fromstring(path.read_bytes())
    except ET.ParseError as e:
        raise PackageDefinitionError(f"'{path}' is not a valid XML document: {e}") from e
    expand_macros(root, os.environ if variables is None else variables)
    return package_from_element(root, base_dir or path.parent)


def _directive_element(parent: ET.Element, directive: Directive) -> None:
    element = ET.SubElement(parent, _tag(directive.element))
    match directive:
        case HashDirective(value=value):
            element.text = value
        case SignDirective(certificate=certificate):
            element.set("Certificate", certificate)
        case SetBinaryInfoDirective(attributes=attributes):
            element.set("Attributes", ",".join(attributes))


def manifest_element(pkg: PackageModel, source_base: Path | None = None) -> ET.Element:
    """
    Builds the XML tree for `pkg`. When `source_base` is given, each file keeps
    a SourcePath relative to it; archives omit source paths.
    """
    root = ET.Element(_tag("Package"), {"Name": pkg.name, "Version": str(pkg.version)})
    if pkg.package_hash:
        root.set("Hash", pkg.package_hash)
    if pkg.description:
        ET.SubElement(root, _tag("Description")).text = pkg.description

    if pkg.dependencies:
        dependencies = ET.SubElement(root, _tag("Dependencies"))
        for dep in pkg.dependencies:
            attrs = {"Package": dep.name}
            if dep.version is not None:
                attrs["Version"] = str(dep.version)
            ET.SubElement(dependencies, _tag("PackageDependency"), attrs)

    files = ET.SubElement(root, _tag("Files"))
    for file in pkg.files:
        attrs = {"Path": file.relative_destination_path.replace("\\", "/")}
        if source_base is not None:
            try:
                attrs["SourcePath"] = file.source_path.relative_to(source_base).as_posix()
            except ValueError:
                attrs["SourcePath"] = str(file.source_path)
        file_element = ET.SubElement(files, _tag("File"), attrs)
        for directive in file.custom_data:
            _directive_element(file_element, directive)
        for ignored in sorted(file.ignored_modules):
            ET.SubElement(file_element, _tag("IgnoreDependency")).text = ignored
    return root


def serialize_manifest(pkg: PackageModel, source_base: Path | None = None) -> bytes:
    root = manifest_element(pkg, source_base)
    ET.indent(root)
    return ET.tostring(root, encoding="utf-8", xml_declaration=True)


def write_manifest(pkg: PackageModel, path: Path, source_base: Path | None = None) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(serialize_manifest(pkg, source_base))
