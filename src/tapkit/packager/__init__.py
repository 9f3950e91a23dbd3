"""
Builds redistributable, versioned and signed plugin packages from an XML
package definition and a folder of built binaries.
"""

from .models import PackageDependency, PackageFile, PackageModel
from .packaging.orchestrator import BuildOrchestrator
from .resolver import DependencyResolver
from .versioning import SemanticVersion, VersionSpecifier

__all__ = [
    "BuildOrchestrator",
    "DependencyResolver",
    "PackageDependency",
    "PackageFile",
    "PackageModel",
    "SemanticVersion",
    "VersionSpecifier",
]
