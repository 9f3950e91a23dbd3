class BuildError(Exception):
    exit_code: int = 4


class ArgumentError(BuildError):
    exit_code = 2


class UnhandledDirectiveError(ArgumentError):
    pass


class PackageDefinitionError(BuildError):
    exit_code = 3


class InvalidPackageNameError(BuildError):
    exit_code = 5


class PackageDependencyError(BuildError):
    exit_code = 6


class ModuleDependencyError(BuildError):
    exit_code = 7


class MissingToolError(BuildError):
    pass


class ToolError(BuildError):
    def __init__(self, message: str, stdout: str = "", stderr: str = "") -> None:
        super().__init__(message)
        self.stdout = stdout
        self.stderr = stderr


class SigningError(BuildError):
    pass


class InvalidArchiveError(BuildError):
    pass


class InvalidPreReleaseError(BuildError):
    exit_code = 1
