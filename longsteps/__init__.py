"""longsteps: long running processes over arbitrary spans of time."""

from .config import LongStepsConfig, load_config
from .errors import (
    DanglingProcessReference,
    InvalidInitialStep,
    LongStepsError,
    ProcessNotFound,
    StepExecutionFailure,
    StorageContractViolation,
    UnexpectedStepError,
    UnknownProcessType,
)
from .manager import LongSteps
from .models import FinalStep, NextStep, ProcessRecord, ProcessStatus, ProcessView
from .process import Process, ProcessDefinition
from .registry import REGISTRY, ProcessRegistry, register_process
from .storage import get_storage

__version__ = "0.1.0"
__all__ = [
    "LongSteps",
    "LongStepsConfig",
    "load_config",
    "Process",
    "ProcessDefinition",
    "ProcessRecord",
    "ProcessStatus",
    "ProcessView",
    "NextStep",
    "FinalStep",
    "ProcessRegistry",
    "REGISTRY",
    "register_process",
    "get_storage",
    "LongStepsError",
    "UnknownProcessType",
    "InvalidInitialStep",
    "DanglingProcessReference",
    "UnexpectedStepError",
    "StorageContractViolation",
    "ProcessNotFound",
    "StepExecutionFailure",
]
