from pyvider.telemetry import logger

from ..models import PackageModel
from ..resolver import DependencyResolver
from .base import ActionArgs, PackageAction, register_action


@register_action
class ModuleDependencyAction(PackageAction):
    """
    Discovers the modules referenced by the package files and satisfies them
    with package dependencies or bundled payload. Runs after every action that
    rewrites binaries, since those change what a file references.
    """

    order = 999

    def execute(self, package: PackageModel, args: ActionArgs) -> bool:
        context = args.context
        index = context.module_index
        for file in package.files:
            record = index.refresh(file.source_path)
            if record is not None:
                file.set_dependent_modules(record.references)

        resolver = DependencyResolver(
            installed=context.installation.get_packages(),
            index=index,
            excluded=context.excluded_modules,
            working_dir=context.project_dir,
        )
        result = resolver.resolve(package)
        if result.unresolved:
            logger.warning(
                "Some module references could not be resolved",
                modules=sorted(result.unresolved),
            )
        return result.changed
