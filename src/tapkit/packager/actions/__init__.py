"""
Pluggable package actions. Importing this package registers the default set with
the pipeline, in ascending order:

- SetBinaryInfoAction (0)
- IncludePackageDependenciesAction (10)
- ObfuscateAction (10)
- ModuleDependencyAction (999)
- SignAction (1000)
- FileHashAction (1001)
"""

from .base import (
    ActionArgs,
    ActionPipeline,
    BuildContext,
    PackageAction,
    Stage,
    check_directives_consumed,
    register_action,
    registered_actions,
)
from .binary_info import SetBinaryInfoAction
from .hashing import FileHashAction, compute_package_hash, hash_file
from .inheritance import IncludePackageDependenciesAction
from .module_dependencies import ModuleDependencyAction
from .obfuscation import ObfuscateAction
from .signing import SignAction

__all__ = [
    "ActionArgs",
    "ActionPipeline",
    "BuildContext",
    "FileHashAction",
    "IncludePackageDependenciesAction",
    "ModuleDependencyAction",
    "ObfuscateAction",
    "PackageAction",
    "SetBinaryInfoAction",
    "SignAction",
    "Stage",
    "check_directives_consumed",
    "compute_package_hash",
    "hash_file",
    "register_action",
    "registered_actions",
]
