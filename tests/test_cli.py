"""Tests for the tappkg command-line interface."""

from pathlib import Path
from typing import Callable

from click.testing import CliRunner
import pytest

from tapkit.packager.actions.hashing import hash_directive, hash_file
from tapkit.packager.cli import cli
from tapkit.packager.models import PackageFile, PackageModel
from tapkit.packager.packaging.manifest import write_manifest
from tapkit.packager.versioning import SemanticVersion

NS = 'xmlns="http://opentap.io/schemas/package"'


@pytest.fixture
def project(tmp_path: Path, make_module: Callable[..., Path]) -> Path:
    directory = tmp_path / "project"
    make_module(directory / "bin" / "Demo.dll", "Demo", "1.0.0", [("M", "1.5.0")])
    return directory


@pytest.fixture
def make_definition(project: Path) -> Callable[..., Path]:
    def _make(name: str = "Demo", dependencies: str = "", files: str | None = None) -> Path:
        if files is None:
            files = '<File Path="Packages/Demo/Demo.dll" SourcePath="bin/Demo.dll"/>'
        path = project / "package.xml"
        path.write_text(
            f'<Package Name="{name}" Version="1.0.0" {NS}>'
            f"<Dependencies>{dependencies}</Dependencies>"
            f"<Files>{files}</Files></Package>"
        )
        return path

    return _make


@pytest.fixture
def create(project: Path, install_dir: Path) -> Callable[..., object]:
    def _create(*args: str) -> object:
        return CliRunner().invoke(
            cli,
            [
                "create",
                *args,
                "--project-directory",
                str(project),
                "--installation-dir",
                str(install_dir),
            ],
        )

    return _create


def install_verified_package(install_dir: Path, name: str, content: bytes) -> Path:
    """Installs a package whose one file carries a matching hash."""
    path = install_dir / "Packages" / name / f"{name}.dll"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    pkg = PackageModel(
        name=name,
        version=SemanticVersion(1, 0, 0),
        files=[
            PackageFile(
                source_path=path,
                relative_destination_path=f"Packages/{name}/{name}.dll",
                custom_data=[hash_directive(hash_file(path))],
            )
        ],
    )
    write_manifest(pkg, install_dir / pkg.definition_path)
    return path


def test_version_option() -> None:
    result = CliRunner().invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert result.output.startswith("tappkg version")


def test_create_succeeds(
    tmp_path: Path, make_definition: Callable, make_installed_package: Callable, create: Callable
) -> None:
    make_installed_package("Base", "1.6.0", [("Packages/Base/M.dll", "M", "1.6.0", [])])
    output = tmp_path / "Demo.TapPackage"

    result = create(str(make_definition()), "-o", str(output))

    assert result.exit_code == 0, result.output
    assert f"✅ Package created: {output}" in result.output
    assert output.is_file()


def test_create_unknown_option_exits_1(make_definition: Callable, create: Callable) -> None:
    result = create(str(make_definition()), "--bogus")
    assert result.exit_code == 1
    assert "No such option" in result.output


def test_create_invalid_prerelease_exits_1(make_definition: Callable, create: Callable) -> None:
    result = create(str(make_definition()), "--prerelease", "not_valid")
    assert result.exit_code == 1
    assert "Pre Release tag" in result.output


def test_create_missing_argument_exits_2() -> None:
    result = CliRunner().invoke(cli, ["create"])
    assert result.exit_code == 2


def test_create_mixed_outputs_exits_2(tmp_path: Path, make_definition: Callable, create: Callable) -> None:
    result = create(str(make_definition()), "-o", str(tmp_path / "a.xml"), "-o", str(tmp_path / "a.TapPackage"))
    assert result.exit_code == 2


def test_create_invalid_definition_exits_3(project: Path, create: Callable) -> None:
    definition = project / "package.xml"
    definition.write_text("<Package Name=")
    result = create(str(definition))
    assert result.exit_code == 3
    assert "❌ Package creation failed" in result.output


def test_create_missing_definition_exits_4(tmp_path: Path, create: Callable) -> None:
    result = create(str(tmp_path / "missing.xml"))
    assert result.exit_code == 4
    assert "Cannot locate XML file" in result.output


def test_create_missing_source_file_exits_4(make_definition: Callable, create: Callable) -> None:
    definition = make_definition(files='<File Path="Packages/Demo/Gone.dll" SourcePath="bin/Gone.dll"/>')
    result = create(str(definition))
    assert result.exit_code == 4
    assert "Gone.dll" in result.output


def test_create_illegal_name_exits_5(make_definition: Callable, create: Callable) -> None:
    result = create(str(make_definition(name="Bad?Name")))
    assert result.exit_code == 5


def test_create_uninstalled_dependency_exits_6(make_definition: Callable, create: Callable) -> None:
    definition = make_definition(dependencies='<PackageDependency Package="Missing" Version="^1.0"/>')
    result = create(str(definition))
    assert result.exit_code == 6
    assert "'Missing'" in result.output


def test_create_module_conflict_exits_7(
    make_definition: Callable, make_installed_package: Callable, create: Callable
) -> None:
    make_installed_package("Base", "1.0.0", [("Packages/Base/M.dll", "M", "1.1.0", [])])
    result = create(str(make_definition()))
    assert result.exit_code == 7
    assert "Please align" in result.output


def test_verify_all_packages(install_dir: Path) -> None:
    install_verified_package(install_dir, "Alpha", b"alpha")
    install_verified_package(install_dir, "Beta", b"beta")

    result = CliRunner().invoke(cli, ["verify", "--installation-dir", str(install_dir)])

    assert result.exit_code == 0, result.output
    assert "✅ Package 'Alpha' verified." in result.output
    assert "✅ Package 'Beta' verified." in result.output


def test_verify_reports_modified_files(install_dir: Path) -> None:
    install_verified_package(install_dir, "Alpha", b"alpha").write_bytes(b"changed")

    result = CliRunner().invoke(cli, ["verify", "Alpha", "--installation-dir", str(install_dir)])

    assert result.exit_code == 3
    assert "File 'Packages/Alpha/Alpha.dll' has non-matching checksum." in result.output


def test_verify_unknown_package_exits_5(install_dir: Path) -> None:
    install_verified_package(install_dir, "Alpha", b"alpha")

    result = CliRunner().invoke(cli, ["verify", "Nope", "--installation-dir", str(install_dir)])

    assert result.exit_code == 5
    assert "Unable to locate package 'Nope'" in result.output
    assert "Installed packages: Alpha" in result.output


def test_verify_without_checksums_is_inconclusive(install_dir: Path, make_installed_package: Callable) -> None:
    make_installed_package("Base", "1.0.0", [("Packages/Base/M.dll", "M", "1.0.0", [])])

    result = CliRunner().invoke(cli, ["verify", "Base", "--installation-dir", str(install_dir)])

    assert result.exit_code == 0
    assert "missing SHA1 checksum" in result.output


def test_info_prints_package_definition(
    tmp_path: Path, make_definition: Callable, make_installed_package: Callable, create: Callable
) -> None:
    make_installed_package("Base", "1.6.0", [("Packages/Base/M.dll", "M", "1.6.0", [])])
    output = tmp_path / "Demo.TapPackage"
    assert create(str(make_definition()), "-o", str(output)).exit_code == 0

    result = CliRunner().invoke(cli, ["info", str(output)])

    assert result.exit_code == 0, result.output
    assert "Name: Demo" in result.output
    assert "- Base ^1.6.0" in result.output


def test_info_rejects_invalid_archive(tmp_path: Path) -> None:
    bogus = tmp_path / "bogus.TapPackage"
    bogus.write_text("nope")
    result = CliRunner().invoke(cli, ["info", str(bogus)])
    assert result.exit_code == 1
    assert "Could not read package" in result.output


def test_keygen(tmp_path: Path) -> None:
    runner = CliRunner()
    with runner.isolated_filesystem(temp_dir=tmp_path):
        result = runner.invoke(cli, ["keygen", "--key-size", "2048"])
        assert result.exit_code == 0, result.output
        assert Path("keys/signing.pem").is_file()
        assert Path("keys/signing.pub.pem").is_file()

        again = runner.invoke(cli, ["keygen"])
        assert again.exit_code == 0
        assert "Keys already exist" in again.output
