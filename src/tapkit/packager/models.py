"""In-memory model of a package: metadata, dependencies, files and directives."""

import base64
from pathlib import Path
from typing import ClassVar, TypeVar

from attrs import define, field

from .exceptions import PackageDefinitionError
from .versioning import SemanticVersion, VersionSpecifier

# Packages may not depend on the runtime's own base module.
RUNTIME_BASE_MODULES = frozenset({"mscorlib"})

# Payload modules bundled into a package live below this folder.
BUNDLED_DEPENDENCIES_DIR = "Dependencies"

PACKAGE_DEFINITION_DIR = "Packages"
PACKAGE_DEFINITION_FILE = "package.xml"


@define(frozen=True, slots=True)
class ModuleReference:
    name: str
    version: SemanticVersion

    def __str__(self) -> str:
        return f"{self.name} {self.version}"


@define(frozen=True, slots=True)
class ModuleRecord:
    """A binary module found by the module index."""

    name: str
    version: SemanticVersion
    location: Path
    references: tuple[ModuleReference, ...] = ()

    @property
    def identity(self) -> tuple[str, Path]:
        return (self.name, self.location)

    def as_reference(self) -> ModuleReference:
        return ModuleReference(self.name, self.version)


# --- Per-file directives -----------------------------------------------------
# Each directive is handled (and removed) by exactly one package action. Hash is
# the only inert marker; it stays on the file and ends up in the manifest.


@define(frozen=True, slots=True)
class HashDirective:
    element: ClassVar[str] = "Hash"
    inert: ClassVar[bool] = True

    value: str

    def digest(self) -> bytes:
        """Accepts the 40 char hex form and the 28 char base64 form."""
        if len(self.value) == 40:
            return bytes.fromhex(self.value)
        if len(self.value) == 28:
            return base64.b64decode(self.value)
        if not self.value:
            return b""
        raise ValueError("Value should be a hex or base64 encoded SHA1 hash.")

    def matches(self, other: "HashDirective") -> bool:
        return self.digest() == other.digest()


@define(frozen=True, slots=True)
class SignDirective:
    element: ClassVar[str] = "Sign"
    inert: ClassVar[bool] = False

    certificate: str


@define(frozen=True, slots=True)
class ObfuscateDirective:
    element: ClassVar[str] = "Obfuscate"
    inert: ClassVar[bool] = False


@define(frozen=True, slots=True)
class IncludePackageDependenciesDirective:
    element: ClassVar[str] = "IncludePackageDependencies"
    inert: ClassVar[bool] = False


@define(frozen=True, slots=True)
class SetBinaryInfoDirective:
    element: ClassVar[str] = "SetBinaryInfo"
    inert: ClassVar[bool] = False

    attributes: tuple[str, ...] = ()

    @property
    def features(self) -> set[str]:
        return {a.strip().lower() for a in self.attributes if a.strip()}


Directive = (
    HashDirective
    | SignDirective
    | ObfuscateDirective
    | IncludePackageDependenciesDirective
    | SetBinaryInfoDirective
)

DIRECTIVE_TYPES: tuple[type, ...] = (
    HashDirective,
    SignDirective,
    ObfuscateDirective,
    IncludePackageDependenciesDirective,
    SetBinaryInfoDirective,
)

D = TypeVar("D")


@define(slots=True)
class PackageFile:
    source_path: Path
    relative_destination_path: str
    dependent_modules: list[ModuleReference] = field(factory=list)
    ignored_modules: set[str] = field(factory=set)
    custom_data: list[Directive] = field(factory=list)

    @property
    def file_name(self) -> str:
        return Path(self.relative_destination_path).name

    def has_directive(self, kind: type[D]) -> bool:
        return any(isinstance(d, kind) for d in self.custom_data)

    def get_directive(self, kind: type[D]) -> D | None:
        return next((d for d in self.custom_data if isinstance(d, kind)), None)

    def get_directives(self, kind: type[D]) -> list[D]:
        return [d for d in self.custom_data if isinstance(d, kind)]

    def remove_directive(self, kind: type) -> None:
        self.custom_data = [d for d in self.custom_data if not isinstance(d, kind)]

    def set_dependent_modules(self, references: "list[ModuleReference] | tuple[ModuleReference, ...]") -> None:
        self.dependent_modules = list(dict.fromkeys(references))


@define(slots=True)
class PackageDependency:
    name: str
    version: VersionSpecifier | None = None
    raw_version: str | None = None

    def __str__(self) -> str:
        return f"{self.name} ({self.version if self.version else 'unspecified'})"


@define(slots=True, eq=False)
class PackageModel:
    name: str
    version: SemanticVersion
    raw_version: str | None = None
    description: str | None = None
    dependencies: list[PackageDependency] = field(factory=list)
    files: list[PackageFile] = field(factory=list)
    package_hash: str | None = None

    def get_dependency(self, name: str) -> PackageDependency | None:
        return next((d for d in self.dependencies if d.name == name), None)

    def add_dependency(self, dependency: PackageDependency) -> None:
        if self.get_dependency(dependency.name) is not None:
            raise PackageDefinitionError(
                f"Package '{self.name}' already depends on '{dependency.name}'."
            )
        self.dependencies.append(dependency)

    def remove_dependency(self, name: str) -> None:
        self.dependencies = [d for d in self.dependencies if d.name != name]

    def find_file(self, relative_destination_path: str) -> PackageFile | None:
        wanted = relative_destination_path.replace("\\", "/")
        return next(
            (
                f
                for f in self.files
                if f.relative_destination_path.replace("\\", "/") == wanted
            ),
            None,
        )

    def depender_of(self, reference: ModuleReference) -> PackageFile | None:
        return next((f for f in self.files if reference in f.dependent_modules), None)

    @property
    def definition_path(self) -> str:
        return "/".join((PACKAGE_DEFINITION_DIR, self.name, PACKAGE_DEFINITION_FILE))
