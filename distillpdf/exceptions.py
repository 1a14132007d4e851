"""Custom exceptions raised by :mod:`distillpdf`.

Every error carries an HTTP-equivalent ``status_code`` so the host
middleware can turn it into a response without inspecting its type.
"""

from __future__ import annotations

from typing import Sequence


class DistillPDFError(Exception):
    """Base exception for all :mod:`distillpdf` errors."""

    status_code = 500

    def __init__(self, message: str = "", *, status_code: int | None = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code

    @property
    def default_message(self) -> str:
        return "An unknown distillation error occurred."

    def to_response(self) -> tuple[int, str]:
        """Return the ``(status_code, message)`` pair shown to clients."""

        return self.status_code, self.message


class UnknownPreset(DistillPDFError):
    """Raised when a non-empty preset name is not in the registry."""

    status_code = 400

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Unknown preset: {name}")


class ForbiddenProfilePath(DistillPDFError):
    """Raised when an ICC profile reference escapes the profile root."""

    status_code = 403

    def __init__(self, profile: str) -> None:
        self.profile = profile
        super().__init__(f"Forbidden ICC profile path: {profile}")


class UpstreamNotReady(DistillPDFError):
    """Raised when the renderer did not answer with a success status."""

    def __init__(self, status_code: int, reason: str = "") -> None:
        super().__init__(reason or f"Upstream status {status_code}", status_code=status_code)


class EngineUnavailable(DistillPDFError):
    """Raised when an external program cannot be found or spawned."""

    @property
    def default_message(self) -> str:
        return "External engine is not available."


class EngineFailure(DistillPDFError):
    """Raised when a spawned program fails or leaves unreadable output."""

    def __init__(
        self,
        message: str = "",
        *,
        diagnostics: str = "",
        returncode: int | None = None,
    ) -> None:
        self.diagnostics = diagnostics
        self.returncode = returncode
        super().__init__(message)

    @property
    def default_message(self) -> str:
        return "External engine failed."


class EngineTimeout(EngineFailure):
    """Raised when a spawned program exceeds the configured wall-clock limit."""

    status_code = 504

    @property
    def default_message(self) -> str:
        return "External engine timed out."


class PageCountUnparseable(DistillPDFError):
    """Raised when the page-count query does not print an integer."""

    def __init__(self, output: str) -> None:
        self.output = output
        super().__init__(f"Could not get page count from {output!r}")


class PartialDistillFailure(DistillPDFError):
    """Raised when one or more parallel chunks failed to distill.

    The status code follows the first chunk error, so a chunk timeout
    still answers 504.
    """

    def __init__(self, failed_chunks: Sequence[object], first_error: BaseException) -> None:
        self.failed_chunks = list(failed_chunks)
        self.first_error = first_error
        super().__init__(
            f"Distillation failed for {len(self.failed_chunks)} chunk(s): {first_error}",
            status_code=getattr(first_error, "status_code", None),
        )


__all__ = [
    "DistillPDFError",
    "UnknownPreset",
    "ForbiddenProfilePath",
    "UpstreamNotReady",
    "EngineUnavailable",
    "EngineFailure",
    "EngineTimeout",
    "PageCountUnparseable",
    "PartialDistillFailure",
]
