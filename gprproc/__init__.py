__version__ = "0.1.0"

from .errors import (
    ConfigurationError,
    ExportError,
    FileResolutionError,
    GPRError,
    LoadError,
    ParseError,
    PrimitiveError,
    UnrecognizedStepError,
)
from .gpr import GPR, GPRMeta, TraceMetadata
from .steps import (
    ProcessingStep,
    StepName,
    all_available_steps,
    default_processing_profile,
    default_with_topo_profile,
    parse_step_list,
)

__all__ = [
    "__version__",
    "GPR", "GPRMeta", "TraceMetadata",
    "ProcessingStep", "StepName",
    "all_available_steps", "default_processing_profile", "default_with_topo_profile",
    "parse_step_list",
    "GPRError", "ConfigurationError", "ParseError", "UnrecognizedStepError",
    "PrimitiveError", "FileResolutionError", "LoadError", "ExportError",
]
