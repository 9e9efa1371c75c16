"""Error taxonomy shared by the kernel and the drivers."""

from __future__ import annotations

from collections.abc import Mapping

from boxwright.codes import ErrorCode


class BoxError(Exception):
    """Base error class that carries a code, an optional hint, and context."""

    code: ErrorCode
    hint: str | None
    context: dict[str, str]

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.hint = hint
        self.context = dict(context or {})

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.hint:
            parts.append(f"Hint: {self.hint}")
        for key, value in self.context.items():
            if value:
                parts.append(f"  {key}: {value}")
        return "\n".join(parts)

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "code": self.code.value,
            "message": self.args[0] if self.args else "",
            "context": dict(self.context),
        }
        if self.hint is not None:
            payload["hint"] = self.hint
        return payload


class CycleDetected(BoxError):
    """Raised when the requested definitions form a dependency cycle."""

    def __init__(self, cycle: list[str]):
        # Drop the closing node if the path was reported as A -> B -> A
        if len(cycle) > 1 and cycle[0] == cycle[-1]:
            cycle = cycle[:-1]
        self.cycle = cycle
        path = " -> ".join(cycle + cycle[:1])
        super().__init__(
            f"Cycle detected in definition dependency graph: {path}",
            code=ErrorCode.CYCLE_DETECTED,
            hint="Remove one of the depends_on entries along the cycle.",
        )


class UnknownDependency(BoxError):
    """Raised when depends_on names a definition that does not exist."""

    def __init__(self, name: str, dependent: str | None = None):
        self.name = name
        self.dependent = dependent
        message = f"Unknown dependency '{name}'"
        if dependent:
            message += f" (required by '{dependent}')"
        super().__init__(
            message,
            code=ErrorCode.UNKNOWN_DEPENDENCY,
            hint="Did you make a typo in depends_on?",
        )


class DefinitionNotFound(BoxError):
    """Raised when a requested definition cannot be located."""

    def __init__(self, name: str, suggestion: str | None = None, searched: list[str] | None = None):
        self.name = name
        self.suggestion = suggestion
        hint = f"Did you mean '{suggestion}'?" if suggestion else "Did you make a typo?"
        super().__init__(
            f"Definition '{name}' does not exist",
            code=ErrorCode.DEFINITION_NOT_FOUND,
            hint=hint,
            context={"searched": ", ".join(searched or [])},
        )


class InvalidDefinition(BoxError):
    """Raised when a definition file cannot be parsed."""

    def __init__(self, message: str, *, path: str | None = None, hint: str | None = None):
        self.path = path
        super().__init__(
            message,
            code=ErrorCode.INVALID_DEFINITION,
            hint=hint,
            context={"path": path or ""},
        )


class NoActiveContainer(BoxError):
    """Raised when a container directive runs before FROM or after COMMIT."""

    def __init__(self, directive: str):
        self.directive = directive
        super().__init__(
            f"{directive} requires an active working container",
            code=ErrorCode.NO_ACTIVE_CONTAINER,
            hint="Call FROM before any directive that mutates the container.",
        )


class DirectiveError(BoxError):
    """Raised when a directive is unknown, malformed, or refused."""

    def __init__(self, directive: str, message: str, hint: str | None = None):
        self.directive = directive
        super().__init__(
            f"{directive}: {message}",
            code=ErrorCode.DIRECTIVE_ERROR,
            hint=hint,
        )


class InvalidContext(BoxError):
    """Raised when the harness channel is used outside an active execution."""

    def __init__(self, message: str = "No active harness execution"):
        super().__init__(
            message,
            code=ErrorCode.INVALID_CONTEXT,
            hint="'bx config' is only meaningful inside a definition being built.",
        )


class BackendError(BoxError):
    """Opaque failure reported by the OCI build or run backend."""

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.BACKEND_ERROR, hint=hint, context=context)


class BuildFailed(BoxError):
    """Raised when a definition's execution aborts.

    ``stage`` is one of ``spawn``, ``harness`` or ``directive:<KEYWORD>``.
    """

    def __init__(self, definition: str, stage: str, reason: str, cause: BoxError | None = None):
        self.definition = definition
        self.stage = stage
        self.reason = reason
        self.cause = cause
        super().__init__(
            f"Build of '{definition}' failed during {stage}: {reason}",
            code=ErrorCode.BUILD_FAILED,
            hint=cause.hint if cause is not None else None,
            context={"definition": definition, "stage": stage},
        )


__all__ = [
    "BackendError",
    "BoxError",
    "BuildFailed",
    "CycleDetected",
    "DefinitionNotFound",
    "DirectiveError",
    "InvalidContext",
    "InvalidDefinition",
    "NoActiveContainer",
    "UnknownDependency",
]
