"""Stamps the package version into binaries marked with <SetBinaryInfo Attributes="Version"/>."""

import json
from pathlib import Path

from pyvider.telemetry import logger

from ..models import PackageFile, PackageModel, SetBinaryInfoDirective
from ..tools import MODULE_INFO_SUFFIX, ExternalTool, copy_file, copy_module, unique_path
from .base import ActionArgs, PackageAction, register_action

VERSION_WRITER = ExternalTool(
    name="Binary version writer",
    executables=("tap-setinfo", "tap-setinfo.exe"),
    env_var="TAPPKG_SETINFO_PATH",
)


def _symbols_by_stem(files: list[PackageFile]) -> dict[str, PackageFile]:
    return {
        Path(f.relative_destination_path).stem: f
        for f in files
        if Path(f.relative_destination_path).suffix.lower() == ".pdb"
    }


def _stamp_module_info(binary: Path, version: str) -> None:
    sidecar = binary.with_name(binary.name + MODULE_INFO_SUFFIX)
    if not sidecar.is_file():
        return
    data = json.loads(sidecar.read_text(encoding="utf-8"))
    data["version"] = version
    sidecar.write_text(json.dumps(data, indent=2), encoding="utf-8")


@register_action
class SetBinaryInfoAction(PackageAction):
    order = 0

    def __init__(self, tool: ExternalTool = VERSION_WRITER) -> None:
        self.tool = tool

    def execute(self, package: PackageModel, args: ActionArgs) -> bool:
        symbols = _symbols_by_stem(package.files)
        versioned_dir = args.temp_dir / "Versioned"
        changed = False

        for file in package.files:
            directives = file.get_directives(SetBinaryInfoDirective)
            if not directives:
                continue
            if not any("version" in d.features for d in directives):
                logger.debug(f"No version attribute requested for '{file.file_name}'")
                file.remove_directive(SetBinaryInfoDirective)
                continue

            logger.debug(f"Updating version info for '{file.file_name}'")
            target = unique_path(versioned_dir, Path(file.source_path).name)
            copy_module(file.source_path, target)
            file.source_path = target

            arguments = [
                str(target),
                "--file-version",
                package.version.to_string(3),
                "--informational-version",
                str(package.version),
            ]
            pdb = symbols.get(Path(file.relative_destination_path).stem)
            if pdb is not None and pdb.source_path.is_file():
                pdb_target = target.with_suffix(".pdb")
                copy_file(pdb.source_path, pdb_target)
                pdb.source_path = pdb_target
                arguments.append("--symbols")

            self.tool.run(arguments, cwd=args.temp_dir)
            _stamp_module_info(target, package.version.to_string(3))
            file.remove_directive(SetBinaryInfoDirective)
            changed = True
        return changed
