# API package

from startup_pulse.api.app import StartupPulseAPI
from startup_pulse.api.models import (
    CancelResponse,
    ErrorResponse,
    HealthResponse,
    MonitorSubmitRequest,
    RunStatusResponse,
    RunSubmitResponse,
)

__all__ = [
    "CancelResponse",
    "ErrorResponse",
    "HealthResponse",
    "MonitorSubmitRequest",
    "RunStatusResponse",
    "RunSubmitResponse",
    "StartupPulseAPI",
]
