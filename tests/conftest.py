"""Pytest fixtures for the entire tapkit-packager test suite."""

import json
from pathlib import Path
from typing import Callable

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
import pytest

from tapkit.packager.crypto import generate_keys
from tapkit.packager.models import PackageFile, PackageModel
from tapkit.packager.packaging.manifest import write_manifest
from tapkit.packager.tools import MODULE_INFO_SUFFIX
from tapkit.packager.versioning import SemanticVersion

ModuleSpec = tuple[str, str, str, list[tuple[str, str]]]


@pytest.fixture(scope="session")
def key_pair() -> tuple[rsa.RSAPrivateKey, rsa.RSAPublicKey]:
    """Generates a single RSA key pair for the entire test session."""
    return generate_keys(2048)


@pytest.fixture(scope="session")
def private_key(key_pair: tuple[rsa.RSAPrivateKey, rsa.RSAPublicKey]) -> rsa.RSAPrivateKey:
    """Returns the private key object from the session-scoped key pair."""
    return key_pair[0]


@pytest.fixture(scope="session")
def public_key(key_pair: tuple[rsa.RSAPrivateKey, rsa.RSAPublicKey]) -> rsa.RSAPublicKey:
    """Returns the public key object from the session-scoped key pair."""
    return key_pair[1]


@pytest.fixture(scope="session")
def private_key_pem(private_key: rsa.RSAPrivateKey) -> bytes:
    """Provides the private key serialized in PEM format."""
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def write_module(
    path: Path,
    name: str,
    version: str,
    references: list[tuple[str, str]] | None = None,
    content: bytes | None = None,
) -> Path:
    """Writes a fake binary module and its metadata sidecar."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content if content is not None else f"{name} {version}".encode())
    path.with_name(path.name + MODULE_INFO_SUFFIX).write_text(
        json.dumps(
            {
                "name": name,
                "version": version,
                "references": [{"name": n, "version": v} for n, v in references or []],
            }
        )
    )
    return path


@pytest.fixture
def make_module() -> Callable[..., Path]:
    return write_module


@pytest.fixture
def install_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "installation"
    directory.mkdir()
    return directory


@pytest.fixture
def make_installed_package(install_dir: Path) -> Callable[[str, str, list[ModuleSpec]], PackageModel]:
    """
    A factory fixture that installs a package. Each module is given as
    (destination, module name, module version, references).
    """

    def _install(name: str, version: str, modules: list[ModuleSpec]) -> PackageModel:
        pkg = PackageModel(name=name, version=SemanticVersion.parse(version))
        for destination, module_name, module_version, references in modules:
            source = write_module(install_dir / destination, module_name, module_version, references)
            pkg.files.append(PackageFile(source_path=source, relative_destination_path=destination))
        write_manifest(pkg, install_dir / pkg.definition_path)
        return pkg

    return _install
