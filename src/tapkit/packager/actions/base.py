"""Package actions and the staged pipeline that runs them before archiving."""

from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
import enum
from pathlib import Path
import tempfile
import time
from typing import ClassVar, TypeVar

from attrs import define, field
from pyvider.telemetry import logger

from ..exceptions import UnhandledDirectiveError
from ..installation import Installation
from ..models import PackageModel
from ..module_index import ModuleIndex


class Stage(enum.IntEnum):
    INSTALL = 0
    UNINSTALL = 1
    CREATE = 2


@define
class BuildContext:
    """Everything about the current build that actions may need besides the package."""

    project_dir: Path
    installation: Installation
    module_index: ModuleIndex = field(factory=ModuleIndex)
    obfuscator: str | None = None
    excluded_modules: frozenset[str] = frozenset()


@define(frozen=True)
class ActionArgs:
    temp_dir: Path
    context: BuildContext


class PackageAction(ABC):
    stage: ClassVar[Stage] = Stage.CREATE
    order: ClassVar[int] = 0

    @property
    def name(self) -> str:
        return type(self).__name__

    @abstractmethod
    def execute(self, package: PackageModel, args: ActionArgs) -> bool:
        """Transforms `package`. Returns True if anything changed."""


A = TypeVar("A", bound=type[PackageAction])

_REGISTRY: list[type[PackageAction]] = []


def register_action(action_type: A) -> A:
    """Class decorator adding an action to the default pipeline."""
    if action_type not in _REGISTRY:
        _REGISTRY.append(action_type)
    return action_type


def registered_actions() -> list[PackageAction]:
    return [action_type() for action_type in _REGISTRY]


class ActionPipeline:
    def __init__(self, actions: Iterable[PackageAction] | None = None) -> None:
        self.actions = list(actions) if actions is not None else registered_actions()

    def ordered(self, stage: Stage) -> list[PackageAction]:
        return sorted(
            (a for a in self.actions if a.stage == stage),
            key=lambda a: (a.stage, a.order),
        )

    @contextmanager
    def run(
        self, package: PackageModel, context: BuildContext, stage: Stage = Stage.CREATE
    ) -> Iterator[Path]:
        """
        Runs the actions of `stage` in order and yields the temp directory that
        holds the transformed files. The directory is removed when the block exits.
        """
        with tempfile.TemporaryDirectory(prefix="tappkg_build_") as temp_dir_str:
            args = ActionArgs(temp_dir=Path(temp_dir_str), context=context)
            for action in self.ordered(stage):
                started = time.perf_counter()
                changed = action.execute(package, args)
                logger.debug(
                    f"Ran {action.name} ({action.order})",
                    changed=changed,
                    elapsed_ms=round((time.perf_counter() - started) * 1000),
                )
            check_directives_consumed(package)
            yield args.temp_dir


def check_directives_consumed(package: PackageModel) -> None:
    leftovers = [
        f"File '{file.relative_destination_path}' has a '{directive.element}' "
        "element that no package action handled."
        for file in package.files
        for directive in file.custom_data
        if not directive.inert
    ]
    if leftovers:
        raise UnhandledDirectiveError("\n".join(leftovers))
