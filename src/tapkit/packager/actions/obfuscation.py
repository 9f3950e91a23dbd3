"""Obfuscation of files marked with <Obfuscate/> through an external obfuscator."""

from abc import ABC, abstractmethod
import os
from pathlib import Path
from xml.sax.saxutils import quoteattr

from pyvider.telemetry import logger

from ..exceptions import BuildError, MissingToolError
from ..models import ObfuscateDirective, PackageFile, PackageModel
from ..tools import ExternalTool, copy_module_info
from .base import ActionArgs, PackageAction, register_action


class Obfuscator(ABC):
    name: str
    order: int
    tool: ExternalTool

    def is_available(self) -> bool:
        return self.tool.find() is not None

    @abstractmethod
    def transform(self, temp_dir: Path, files: list[PackageFile], others: list[PackageFile]) -> None:
        """Obfuscates `files`, pointing each at its obfuscated copy."""


class Obfuscar(Obfuscator):
    name = "obfuscar"
    order = 20

    def __init__(self) -> None:
        self.tool = ExternalTool(
            name="Obfuscar",
            executables=("Obfuscar.Console.exe", "obfuscar.console"),
            env_var="OBFUSCAR_PATH",
        )

    def _script(self, out_dir: Path, module: Path, search_paths: list[Path]) -> str:
        lines = [
            "<?xml version='1.0'?>",
            "<Obfuscator>",
            f"  <Var name=\"OutPath\" value={quoteattr(str(out_dir))} />",
            f"  <Module file={quoteattr(str(module))} />",
            *(f"  <AssemblySearchPath path={quoteattr(str(p))} />" for p in search_paths),
            "  <Var name=\"KeepPublicApi\" value=\"true\" />",
            "  <Var name=\"HidePrivateApi\" value=\"true\" />",
            "</Obfuscator>",
        ]
        return "\n".join(lines)

    def transform(self, temp_dir: Path, files: list[PackageFile], others: list[PackageFile]) -> None:
        out_dir = temp_dir / "Obfuscated"
        out_dir.mkdir(parents=True, exist_ok=True)
        search_paths = sorted({f.source_path.resolve().parent for f in others})
        for file in files:
            module = file.source_path.resolve()
            script = temp_dir / f"{module.name}-SCRIPTFILE"
            script.write_text(self._script(out_dir, module, search_paths), encoding="utf-8")
            # -s opts out of Obfuscar telemetry.
            self.tool.run([str(script), "-s"], cwd=temp_dir)

            result = out_dir / module.name
            if not result.is_file():
                raise BuildError(f"Obfuscar did not produce '{result.name}'.")
            copy_module_info(module, result)
            file.source_path = result


def _dotfuscator_search_dirs() -> tuple[Path, ...]:
    dirs: list[Path] = []
    for variable in ("ProgramFiles", "ProgramFiles(x86)"):
        if root := os.environ.get(variable):
            company = Path(root) / "PreEmptive Solutions"
            if company.is_dir():
                dirs.extend(sorted(p for p in company.iterdir() if p.is_dir()))
    return tuple(dirs)


class Dotfuscator(Obfuscator):
    name = "dotfuscator"
    order = 10

    def __init__(self) -> None:
        self.tool = ExternalTool(
            name="Dotfuscator",
            executables=("Dotfuscator.exe", "dotfuscator"),
            env_var="DOTFUSCATOR_PATH",
            search_dirs=_dotfuscator_search_dirs(),
        )

    def _config(self, temp_dir: Path, load_paths: list[Path]) -> Path:
        entries = "\n".join(f"<file dir={quoteattr(str(p))} />" for p in load_paths)
        config = temp_dir / "dotfuscator-config.xml"
        config.write_text(
            '<?xml version="1.0" encoding="utf-8" standalone="no"?>\n'
            "<dotfuscator version=\"2.3\">\n<input>\n<loadpaths>\n"
            f"{entries}\n</loadpaths>\n</input>\n</dotfuscator>\n",
            encoding="utf-8",
        )
        return config

    def transform(self, temp_dir: Path, files: list[PackageFile], others: list[PackageFile]) -> None:
        out_dir = temp_dir / "Dotfuscated"
        inputs = [f.source_path.resolve() for f in files]
        load_paths = list(
            dict.fromkeys([p.parent for p in inputs] + [f.source_path.resolve().parent for f in others])
        )
        arguments = [
            "/in:" + ",".join(f'+"{p}"' for p in inputs),
            "/honor:on",
            "/smart:on",
            "/rename:on",
            "/strip:on",
            "/keep:namespace",
            "-enha:on",
            "-cont:high",
            "-prune:off",
            f"/out:{out_dir}",
            str(self._config(temp_dir, load_paths)),
        ]
        self.tool.run(arguments, cwd=temp_dir)

        # Outputs are named after the input binaries, not the package destinations.
        for file, source in zip(files, inputs):
            result = out_dir / source.name
            if not result.is_file():
                raise BuildError(f"Dotfuscator did not produce '{result.name}'.")
            copy_module_info(source, result)
            file.source_path = result


OBFUSCATORS: list[Obfuscator] = [Dotfuscator(), Obfuscar()]


def select_obfuscator(name: str | None, candidates: list[Obfuscator] | None = None) -> Obfuscator:
    candidates = sorted(candidates if candidates is not None else OBFUSCATORS, key=lambda o: o.order)
    if name:
        chosen = next((o for o in candidates if o.name == name.lower()), None)
        if chosen is None:
            raise BuildError(
                f"Unknown obfuscator '{name}'. Choose one of: "
                f"{', '.join(o.name for o in candidates)}."
            )
        chosen.tool.ensure()
        return chosen
    available = next((o for o in candidates if o.is_available()), None)
    if available is None:
        raise MissingToolError(
            "Files are marked for obfuscation but no obfuscator was found. Install "
            "Obfuscar (OBFUSCAR_PATH) or Dotfuscator (DOTFUSCATOR_PATH)."
        )
    return available


@register_action
class ObfuscateAction(PackageAction):
    order = 10

    def __init__(self, obfuscators: list[Obfuscator] | None = None) -> None:
        self.obfuscators = obfuscators

    def execute(self, package: PackageModel, args: ActionArgs) -> bool:
        marked = [f for f in package.files if f.has_directive(ObfuscateDirective)]
        if not marked:
            return False
        others = [f for f in package.files if not f.has_directive(ObfuscateDirective)]

        obfuscator = select_obfuscator(args.context.obfuscator, self.obfuscators)
        logger.info(f"Obfuscating {len(marked)} file(s) with {obfuscator.name}")
        obfuscator.transform(args.temp_dir, marked, others)
        for file in marked:
            file.remove_directive(ObfuscateDirective)
        return True
