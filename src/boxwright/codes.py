"""Error code constants for boxwright errors.

These constants prevent stringly-typed error codes and let callers
branch on the failure kind without matching on messages.
"""

from enum import Enum


class ErrorCode(str, Enum):
    """Stable error identifiers carried by every BoxError."""

    # Graph construction (raised before anything is spawned)
    CYCLE_DETECTED = "CYCLE_DETECTED"
    UNKNOWN_DEPENDENCY = "UNKNOWN_DEPENDENCY"
    DEFINITION_NOT_FOUND = "DEFINITION_NOT_FOUND"
    INVALID_DEFINITION = "INVALID_DEFINITION"

    # Harness protocol misuse
    NO_ACTIVE_CONTAINER = "NO_ACTIVE_CONTAINER"
    INVALID_CONTEXT = "INVALID_CONTEXT"
    DIRECTIVE_ERROR = "DIRECTIVE_ERROR"

    # Execution
    BUILD_FAILED = "BUILD_FAILED"
    BACKEND_ERROR = "BACKEND_ERROR"
