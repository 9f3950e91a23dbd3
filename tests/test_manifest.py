"""Tests for reading and writing package definitions."""

from pathlib import Path
import xml.etree.ElementTree as ET

import pytest
from pytest import MonkeyPatch

from tapkit.packager.exceptions import PackageDefinitionError, UnhandledDirectiveError
from tapkit.packager.models import (
    HashDirective,
    IncludePackageDependenciesDirective,
    ObfuscateDirective,
    SetBinaryInfoDirective,
    SignDirective,
)
from tapkit.packager.packaging.manifest import (
    PACKAGE_NAMESPACE,
    load_manifest,
    serialize_manifest,
    write_manifest,
)
from tapkit.packager.versioning import SemanticVersion

SAMPLE = """<?xml version="1.0" encoding="utf-8"?>
<Package Name="Demo" Version="1.2.0" xmlns="http://opentap.io/schemas/package">
  <Description>A demo plugin</Description>
  <Dependencies>
    <PackageDependency Package="Base" Version="^2.1"/>
    <Package Name="Legacy"/>
  </Dependencies>
  <Files>
    <File Path="Packages/Demo/Demo.dll" SourcePath="bin/Demo.dll">
      <SetAssemblyInfo Attributes="Version"/>
      <Obfuscate/>
      <Sign Certificate="keys/signing.pem"/>
      <IgnoreDependency>Vendor.Only</IgnoreDependency>
    </File>
    <File Path="Packages/Demo/deps.xml">
      <IncludePackageDependencies/>
    </File>
  </Files>
</Package>
"""


def write(tmp_path: Path, text: str, name: str = "package.xml") -> Path:
    path = tmp_path / name
    path.write_text(text)
    return path


def test_load_manifest(tmp_path: Path) -> None:
    pkg = load_manifest(write(tmp_path, SAMPLE))

    assert pkg.name == "Demo"
    assert pkg.version == SemanticVersion(1, 2, 0)
    assert pkg.description == "A demo plugin"
    assert [d.name for d in pkg.dependencies] == ["Base", "Legacy"]
    assert str(pkg.dependencies[0].version) == "^2.1"
    assert pkg.dependencies[1].version is None

    dll, deps = pkg.files
    assert dll.source_path == tmp_path / "bin/Demo.dll"
    assert deps.source_path == tmp_path / "Packages/Demo/deps.xml"
    assert dll.custom_data == [
        SetBinaryInfoDirective(("Version",)),
        ObfuscateDirective(),
        SignDirective("keys/signing.pem"),
    ]
    assert dll.ignored_modules == {"Vendor.Only"}
    assert deps.custom_data == [IncludePackageDependenciesDirective()]


def test_source_paths_resolve_against_base_dir(tmp_path: Path) -> None:
    project = tmp_path / "project"
    pkg = load_manifest(write(tmp_path, SAMPLE), base_dir=project)
    assert pkg.files[0].source_path == project / "bin/Demo.dll"


def test_macros_expand_from_environment(tmp_path: Path, monkeypatch: MonkeyPatch) -> None:
    monkeypatch.setenv("DEMO_VERSION", "3.1.4")
    monkeypatch.delenv("UNKNOWN_MACRO", raising=False)
    text = (
        '<Package Name="Demo" Version="$(DEMO_VERSION)" xmlns="http://opentap.io/schemas/package">'
        "<Description>$(UNKNOWN_MACRO)</Description></Package>"
    )
    pkg = load_manifest(write(tmp_path, text))
    assert pkg.version == SemanticVersion(3, 1, 4)
    assert pkg.description == "$(UNKNOWN_MACRO)"


def test_missing_version_defaults_to_zero(tmp_path: Path) -> None:
    pkg = load_manifest(write(tmp_path, '<Package Name="Demo"/>'))
    assert pkg.version == SemanticVersion(0, 0, 0)


@pytest.mark.parametrize(
    "text, message",
    [
        ('<Package Version="1.0.0"/>', "no 'Name' attribute"),
        ('<Package Name="Demo" Version="one"/>', "not a valid version"),
        ("<Package Name=", "not a valid XML document"),
        ("<Plugin Name='Demo'/>", "Expected a 'Package' root element"),
        (
            '<Package Name="Demo"><Dependencies><PackageDependency Package="A"/>'
            '<PackageDependency Package="A"/></Dependencies></Package>',
            "declared more than once",
        ),
        ('<Package Name="Demo"><Files><File/></Files></Package>', "no 'Path' attribute"),
    ],
)
def test_invalid_definitions(tmp_path: Path, text: str, message: str) -> None:
    with pytest.raises(PackageDefinitionError, match=message):
        load_manifest(write(tmp_path, text))


def test_unknown_file_element_is_unhandled(tmp_path: Path) -> None:
    text = '<Package Name="Demo"><Files><File Path="a.dll"><Licensed/></File></Files></Package>'
    with pytest.raises(UnhandledDirectiveError, match="Missing handler for XML element 'Licensed'"):
        load_manifest(write(tmp_path, text))


def test_glob_paths_expand_against_base_dir(tmp_path: Path) -> None:
    (tmp_path / "Plugins").mkdir()
    (tmp_path / "Plugins" / "b.dll").write_bytes(b"b")
    (tmp_path / "Plugins" / "a.dll").write_bytes(b"a")
    (tmp_path / "Plugins" / "readme.txt").write_text("x")
    text = '<Package Name="Demo"><Files><File Path="Plugins/*.dll"><Sign Certificate="k.pem"/></File></Files></Package>'

    pkg = load_manifest(write(tmp_path, text))

    assert [f.relative_destination_path for f in pkg.files] == ["Plugins/a.dll", "Plugins/b.dll"]
    assert all(f.get_directive(SignDirective) == SignDirective("k.pem") for f in pkg.files)


def test_serialize_round_trip(tmp_path: Path) -> None:
    pkg = load_manifest(write(tmp_path, SAMPLE))
    pkg.files[0].custom_data.append(HashDirective("AB" * 20))
    pkg.package_hash = "CAFE"

    out = tmp_path / "out" / "package.xml"
    write_manifest(pkg, out, source_base=tmp_path)
    root = ET.parse(out).getroot()
    assert root.tag == f"{{{PACKAGE_NAMESPACE}}}Package"
    assert root.get("Hash") == "CAFE"

    reloaded = load_manifest(out, base_dir=tmp_path)
    assert reloaded.name == pkg.name
    assert [f.source_path for f in reloaded.files] == [f.source_path for f in pkg.files]
    assert reloaded.files[0].custom_data == pkg.files[0].custom_data
    assert reloaded.files[0].ignored_modules == {"Vendor.Only"}
    assert [str(d.version) for d in reloaded.dependencies if d.version] == ["^2.1"]


def test_serialize_without_source_base_omits_source_paths(tmp_path: Path) -> None:
    pkg = load_manifest(write(tmp_path, SAMPLE))
    xml = serialize_manifest(pkg).decode()
    assert "SourcePath" not in xml
    assert xml.startswith("<?xml")
