from importlib.metadata import PackageNotFoundError, version

from akte.assembly.conditions import ConditionEvaluator, resolve_nested_placeholders
from akte.context import PlaceholderContext
from akte.models import AssemblyOptions, AssemblyReport, ConditionConfig
from akte.pipeline import AssemblyError, DocumentAssembler, assemble_document

try:
    __version__ = version("akte")
except PackageNotFoundError:
    # Source checkout without an installed distribution
    __version__ = "0.0.0-dev"

__all__ = [
    "DocumentAssembler",
    "AssemblyError",
    "AssemblyOptions",
    "AssemblyReport",
    "ConditionConfig",
    "ConditionEvaluator",
    "PlaceholderContext",
    "assemble_document",
    "resolve_nested_placeholders",
    "__version__",
]
