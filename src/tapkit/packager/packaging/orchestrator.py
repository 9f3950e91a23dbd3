"""Core logic for building a package archive from a package definition."""

from collections.abc import Sequence
from pathlib import Path

from pyvider.telemetry import logger

from ..actions import ActionPipeline, BuildContext
from ..config import PackagerConfig
from ..exceptions import (
    ArgumentError,
    BuildError,
    InvalidPackageNameError,
    InvalidPreReleaseError,
)
from ..installation import Installation
from ..models import PackageModel
from ..module_index import ModuleIndex
from ..tools import copy_file
from ..verify import install_conflicts
from ..versioning import is_valid_pre_release
from .archiver import verify_archive_integrity, write_archive
from .manifest import load_manifest, write_manifest

DEFAULT_EXTENSION = "TapPackage"
_ILLEGAL_NAME_CHARACTERS = set('<>:"/\\|?*')


def validate_package_name(name: str) -> None:
    for character in name:
        if character in _ILLEGAL_NAME_CHARACTERS or ord(character) < 32:
            raise InvalidPackageNameError(
                f"Package name cannot contain invalid file path characters: '{character}'"
            )


def validate_pre_release(tag: str | None) -> None:
    if tag is not None and not is_valid_pre_release(tag):
        raise InvalidPreReleaseError(
            "Pre Release tag must be a series of dot separated identifiers that "
            "contain only letters, numbers and hyphens '[0-9A-Za-z-]'."
        )


def default_output_name(pkg: PackageModel) -> str:
    return f"{pkg.name}.{pkg.version}.{DEFAULT_EXTENSION}"


class BuildOrchestrator:
    def __init__(
        self,
        manifest_path: Path,
        config: PackagerConfig,
        output_paths: Sequence[Path] = (),
        prerelease: str | None = None,
        install: bool = False,
        pipeline: ActionPipeline | None = None,
    ) -> None:
        self.manifest_path = Path(manifest_path)
        self.config = config
        self.output_paths = [Path(p) for p in output_paths]
        self.prerelease = prerelease
        self.install = install
        self.pipeline = pipeline or ActionPipeline()
        self.installation = Installation(config.installation_dir)

    @property
    def xml_only(self) -> bool:
        """Every output is an .xml file: only re-serialize the definition."""
        xml = [p.suffix.lower() == ".xml" for p in self.output_paths]
        if any(xml) and not all(xml):
            raise ArgumentError(
                "Cannot mix '.xml' outputs with package outputs in a single run."
            )
        return bool(xml) and all(xml)

    def load_package(self) -> PackageModel:
        if not self.manifest_path.is_file():
            raise BuildError(f"Cannot locate XML file '{self.manifest_path}'")
        if not self.config.project_dir.is_dir():
            raise BuildError(f"Project directory '{self.config.project_dir}' does not exist.")

        pkg = load_manifest(self.manifest_path, base_dir=self.config.project_dir)
        validate_package_name(pkg.name)
        return pkg

    def _check_sources(self, pkg: PackageModel) -> None:
        missing = [str(f.source_path) for f in pkg.files if not f.source_path.is_file()]
        if missing:
            raise BuildError(
                "Files referenced by the package definition were not found:\n  "
                + "\n  ".join(missing)
            )

    def _module_index(self) -> ModuleIndex:
        index = ModuleIndex()
        index.search(self.config.project_dir)
        if self.installation.directory != self.config.project_dir:
            index.search(self.installation.directory)
        logger.debug(f"Module index holds {len(index)} modules.")
        return index

    def build_package(self) -> list[Path]:
        """Builds the package and returns the written output paths."""
        logger.info("Orchestrator starting package build...")
        validate_pre_release(self.prerelease)
        xml_only = self.xml_only
        pkg = self.load_package()

        if xml_only:
            for path in self.output_paths:
                write_manifest(pkg, path, source_base=self.config.project_dir)
                logger.info(f"Wrote expanded package definition '{path}'")
            return list(self.output_paths)

        if self.prerelease:
            pkg.version = pkg.version.with_pre_release(self.prerelease)
        self._check_sources(pkg)

        context = BuildContext(
            project_dir=self.config.project_dir,
            installation=self.installation,
            module_index=self._module_index(),
            obfuscator=self.config.obfuscator,
            excluded_modules=self.config.exclude_modules,
        )
        outputs = self.output_paths or [Path(default_output_name(pkg))]

        with self.pipeline.run(pkg, context) as temp_dir:
            logger.info("Creating package.")
            archive = write_archive(pkg, temp_dir / default_output_name(pkg))
            verify_archive_integrity(archive)
            for path in outputs:
                copy_file(archive, path)
                logger.info(f"Package '{path}' containing '{pkg.name}' successfully created.")

        if self.install:
            self._install(pkg)
        return outputs

    def _install(self, pkg: PackageModel) -> None:
        for installed, file, _ in install_conflicts(self.installation.get_packages(), [pkg]):
            logger.warning(
                f"'{file.relative_destination_path}' is also installed by "
                f"'{installed.name}' with different content."
            )
        self.installation.install_definition(pkg)
