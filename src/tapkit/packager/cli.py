"""The `tappkg` command-line interface."""

import importlib.metadata
from pathlib import Path
from typing import Any

import click

from .config import OBFUSCATORS, load_config
from .crypto import generate_keys, write_key_pair
from .exceptions import BuildError, InvalidArchiveError
from .installation import Installation
from .packaging.orchestrator import BuildOrchestrator
from .packaging.reader import PackageReader
from .verify import FileStatus, verify_package

try:
    __version__ = importlib.metadata.version("tapkit-packager")
except importlib.metadata.PackageNotFoundError:
    __version__ = "0.0.0-dev"

EXIT_UNKNOWN_OPTION = 1
EXIT_VERIFY_FAILED = 3
EXIT_NOT_INSTALLED = 5


class CreateCommand(click.Command):
    """Reports unknown options with exit code 1 instead of click's usage code."""

    def parse_args(self, ctx: click.Context, args: list[str]) -> list[str]:
        try:
            return super().parse_args(ctx, args)
        except click.NoSuchOption as e:
            e.exit_code = EXIT_UNKNOWN_OPTION
            raise


@click.group(context_settings=dict(help_option_names=["-h", "--help"]))
@click.version_option(
    __version__,
    "-V",
    "--version",
    prog_name="tappkg",
    message="%(prog)s version %(version)s",
)
def cli() -> None:
    """Package build tool for test automation plugins."""
    pass


@cli.command("create", cls=CreateCommand)
@click.argument(
    "manifest", type=click.Path(dir_okay=False, resolve_path=True, path_type=Path)
)
@click.option(
    "--project-directory",
    "project_dir",
    default=".",
    type=click.Path(file_okay=False, resolve_path=True, path_type=Path),
    help="Directory the package files are resolved against.",
)
@click.option(
    "-o",
    "--out",
    "outputs",
    multiple=True,
    type=click.Path(dir_okay=False, resolve_path=True, path_type=Path),
    help="Output path. Repeat for several copies; '.xml' outputs only write the expanded definition.",
)
@click.option("-p", "--prerelease", help="Pre-release tag appended to the package version.")
@click.option(
    "--obfuscator",
    type=click.Choice(OBFUSCATORS, case_sensitive=False),
    help="Obfuscator for files marked with <Obfuscate/>.",
)
@click.option(
    "--install",
    is_flag=True,
    default=False,
    help="Register the created package in the installation.",
)
@click.option(
    "--installation-dir",
    type=click.Path(file_okay=False, resolve_path=True, path_type=Path),
    help="Override the installation directory from pyproject.toml.",
)
@click.pass_context
def create_command(
    ctx: click.Context,
    manifest: Path,
    project_dir: Path,
    outputs: tuple[Path, ...],
    prerelease: str | None,
    obfuscator: str | None,
    install: bool,
    installation_dir: Path | None,
) -> None:
    """Creates a package based on an XML package definition."""
    click.echo(f"🚀 Creating package from '{manifest}'...")
    try:
        config = load_config(project_dir).with_overrides(
            installation_dir=installation_dir,
            obfuscator=obfuscator.lower() if obfuscator else None,
        )
        orchestrator = BuildOrchestrator(
            manifest_path=manifest,
            config=config,
            output_paths=outputs,
            prerelease=prerelease,
            install=install,
        )
        written = orchestrator.build_package()
    except BuildError as e:
        click.secho(f"❌ Package creation failed:\n{e}", fg="red", err=True)
        ctx.exit(e.exit_code)
    except OSError as e:
        click.secho(f"❌ Package creation failed:\n{e}", fg="red", err=True)
        ctx.exit(BuildError.exit_code)

    for path in written:
        click.secho(f"✅ Package created: {path}", fg="green")


def _print_issues(files: list[Any]) -> None:
    for f in files:
        if f.status is not FileStatus.VERIFIED:
            click.echo(f"  File '{f.path}' {f.status.value}")


@cli.command("verify")
@click.argument("package", required=False, default=None)
@click.option(
    "--installation-dir",
    type=click.Path(file_okay=False, resolve_path=True, path_type=Path),
    help="Override the installation directory from pyproject.toml.",
)
@click.pass_context
def verify_command(
    ctx: click.Context, package: str | None, installation_dir: Path | None
) -> None:
    """Verifies the file checksums of one or all installed packages."""
    directory = installation_dir or load_config(Path.cwd()).installation_dir
    installation = Installation(directory)
    packages = installation.get_packages()

    if package is not None:
        selected = [p for p in packages if p.name == package]
        if not selected:
            click.secho(f"❌ Unable to locate package '{package}'", fg="red", err=True)
            click.echo(f"Installed packages: {', '.join(p.name for p in packages)}")
            ctx.exit(EXIT_NOT_INSTALLED)
        packages = selected

    exit_code = 0
    for pkg in packages:
        click.echo(f"🔍 Verifying package '{pkg.name}'...")
        result = verify_package(pkg, installation.directory)
        if not result.ok:
            exit_code = EXIT_VERIFY_FAILED
            click.secho(f"❌ Package '{pkg.name}' not verified.", fg="red", err=True)
            _print_issues(result.files)
        elif result.inconclusive:
            click.secho(
                f"⚠️  Package '{pkg.name}' is missing SHA1 checksum for verification.",
                fg="yellow",
            )
            _print_issues(result.files)
        else:
            click.secho(f"✅ Package '{pkg.name}' verified.", fg="green")
    ctx.exit(exit_code)


@cli.command("info")
@click.argument(
    "archive", type=click.Path(exists=True, dir_okay=False, resolve_path=True, path_type=Path)
)
def info_command(archive: Path) -> None:
    """Prints the package definition embedded in an archive."""
    try:
        click.echo(PackageReader(archive).get_info())
    except InvalidArchiveError as e:
        click.secho(f"❌ Could not read package: {e}", fg="red", err=True)
        raise click.Abort() from e


@cli.command()
@click.option(
    "--out-dir",
    default="keys",
    type=click.Path(file_okay=False, writable=True, resolve_path=True, path_type=Path),
    help="Directory to save the RSA signing key pair.",
)
@click.option("--key-size", default=4096, show_default=True, type=int)
def keygen(out_dir: Path, key_size: int) -> None:
    """Generates an RSA key pair for <Sign Certificate="..."/> elements."""
    if (out_dir / "signing.pem").exists():
        click.secho(
            f"⚠️  Keys already exist in '{out_dir}'. To regenerate, please delete them first.",
            fg="yellow",
        )
        return
    private_key, _ = generate_keys(key_size)
    private_path, public_path = write_key_pair(private_key, out_dir)
    click.secho(
        f"✅ Signing key pair generated: '{private_path}', '{public_path}'.", fg="green"
    )


main = cli
