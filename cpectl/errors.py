"""Failure kinds for device operations and the result type shown to callers.

Steps raise ``CpectlError`` subclasses; each public operation catches them at
its boundary and returns an ``OperationResult`` instead, so nothing network
related ever escapes to the CLI as an exception.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .config import StepRecord


class ErrorKind(Enum):
    AUTH_FAILURE = "auth_failure"
    RESOLUTION_FAILURE = "resolution_failure"
    CREDENTIAL_INVALID = "credential_invalid"
    UNREACHABLE_ENDPOINT = "unreachable_endpoint"
    SESSION_FAILURE = "session_failure"
    REMOTE_COMMAND_FAILURE = "remote_command_failure"
    API_REJECTED = "api_rejected"
    UNEXPECTED = "unexpected"


class CpectlError(Exception):
    kind = ErrorKind.UNEXPECTED


class AuthFailure(CpectlError):
    kind = ErrorKind.AUTH_FAILURE


class ResolutionFailure(CpectlError):
    kind = ErrorKind.RESOLUTION_FAILURE


class CredentialInvalid(CpectlError):
    kind = ErrorKind.CREDENTIAL_INVALID


class UnreachableEndpoint(CpectlError):
    kind = ErrorKind.UNREACHABLE_ENDPOINT


class SessionFailure(CpectlError):
    kind = ErrorKind.SESSION_FAILURE


class RemoteCommandFailure(CpectlError):
    kind = ErrorKind.REMOTE_COMMAND_FAILURE


class ApiRejected(CpectlError):
    kind = ErrorKind.API_REJECTED


@dataclass
class OperationResult:
    """Outcome of one orchestrated operation.

    ``log`` holds free-form progress lines, ``steps`` the timed remote
    commands that actually ran. Both survive a failure so partial progress
    stays visible in the report.
    """

    ok: bool
    summary: str
    error_kind: Optional[ErrorKind] = None
    failed_at: Optional[str] = None
    log: List[str] = field(default_factory=list)
    steps: List[StepRecord] = field(default_factory=list)

    @classmethod
    def failure(cls, exc: Exception, summary: str, log=None, steps=None, failed_at=None) -> "OperationResult":
        kind = exc.kind if isinstance(exc, CpectlError) else ErrorKind.UNEXPECTED
        return cls(
            ok=False,
            summary=summary,
            error_kind=kind,
            log=list(log or []),
            steps=list(steps or []),
            failed_at=failed_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "summary": self.summary,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "failed_at": self.failed_at,
            "log": list(self.log),
            "steps": [step.to_dict() for step in self.steps],
        }

    def display(self) -> str:
        marker = "✅" if self.ok else "❌"
        lines = [f"{marker} {self.summary}"]
        lines.extend(self.log)
        for step in self.steps:
            lines.append("")
            lines.append(f"{step.name} completed in {step.elapsed_ms} ms")
            lines.append("Output:")
            lines.append(step.output)
        return "\n".join(lines).rstrip() + "\n"

    def __str__(self) -> str:
        return self.display()
