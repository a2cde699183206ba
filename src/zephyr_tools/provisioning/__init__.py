"""Environment setup and SDK installation pipelines."""

from .driver import (
    ProvisioningBusyError,
    ProvisioningDriver,
    ProvisioningError,
    ProvisioningResult,
    ProvisionStage,
)
from .prerequisites import PrerequisiteChecker, PrerequisiteError

__all__ = [
    "ProvisioningDriver",
    "ProvisioningResult",
    "ProvisionStage",
    "ProvisioningError",
    "ProvisioningBusyError",
    "PrerequisiteChecker",
    "PrerequisiteError",
]
