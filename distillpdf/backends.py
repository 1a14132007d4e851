"""External program integration for :mod:`distillpdf`.

Ghostscript distills documents and answers page-count queries; qpdf
extracts page ranges and concatenates documents.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import IO, Sequence

from .exceptions import EngineFailure, EngineTimeout, EngineUnavailable, PageCountUnparseable
from .utils import run_subprocess, which

_LOGGER = logging.getLogger("distillpdf.backends")


class BackendType(str, Enum):
    """Enumeration of the external programs the pipeline drives."""

    GHOSTSCRIPT = "ghostscript"
    QPDF = "qpdf"


@dataclass(frozen=True)
class Backend:
    """Represents an external program and its resolved executable."""

    type: BackendType
    executable: str


def require_backend(backend_type: BackendType, name: str) -> Backend:
    """Resolve *name* on ``PATH`` or raise :class:`EngineUnavailable`."""

    executable = which([name])
    if not executable:
        raise EngineUnavailable(f"Cannot spawn {backend_type.value} command: {name!r}")
    return Backend(backend_type, executable)


def invoke(
    backend: Backend,
    arguments: Sequence[str],
    *,
    timeout: float | None,
    stdout: IO[bytes] | None = None,
) -> subprocess.CompletedProcess:
    """Run *backend* with *arguments*, translating spawn and timeout errors."""

    command = [backend.executable, *arguments]
    try:
        return run_subprocess(command, timeout=timeout, stdout=stdout)
    except subprocess.TimeoutExpired as exc:
        _LOGGER.error("%s timed out after %ss", backend.type.value, timeout)
        raise EngineTimeout(
            f"{backend.type.value} timed out after {timeout}s",
            diagnostics=_decode(exc.stderr),
        ) from exc
    except OSError as exc:
        _LOGGER.error("Failed to execute %s: %s", backend.executable, exc)
        raise EngineUnavailable(f"Cannot spawn {backend.type.value} command: {exc}") from exc


def _decode(value: bytes | str | None) -> str:
    if not value:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", "replace")
    return value


def count_pages(backend: Backend, path: Path, *, timeout: float | None) -> int:
    """Ask Ghostscript for the number of pages in *path*."""

    arguments = [
        "-q",
        "-dQUIET",
        "-dNODISPLAY",
        "-dNOSAFER",
        "-dBATCH",
        f"-sFileName={path}",
        "-c",
        "FileName (r) file runpdfbegin pdfpagecount = quit",
    ]
    result = invoke(backend, arguments, timeout=timeout)
    diagnostics = result.stderr.strip()
    if result.returncode != 0 or diagnostics:
        raise EngineFailure(
            f"Page count query failed for {path}",
            diagnostics=diagnostics,
            returncode=result.returncode,
        )
    output = result.stdout.strip()
    try:
        count = int(output)
    except ValueError:
        raise PageCountUnparseable(output) from None
    _LOGGER.debug("Counted %d page(s) in %s", count, path)
    return count


@dataclass(frozen=True)
class PageRange:
    """Represents an inclusive, 1-based page range."""

    start: int
    end: int

    def __post_init__(self) -> None:
        if self.start < 1 or self.end < 1:
            raise ValueError("Page numbers must be positive integers")
        if self.start > self.end:
            raise ValueError("Page range start must be less than or equal to end")

    def __len__(self) -> int:
        return self.end - self.start + 1

    def label(self) -> str:
        if self.start == self.end:
            return f"page_{self.start}"
        return f"pages_{self.start}-{self.end}"

    def qpdf_spec(self) -> str:
        return f"{self.start}-{self.end}"


class PageTool:
    """Page extraction and concatenation through ``qpdf``."""

    def __init__(self, backend: Backend, *, timeout: float | None = None) -> None:
        self.backend = backend
        self.timeout = timeout

    @classmethod
    def from_name(cls, name: str, *, timeout: float | None = None) -> "PageTool":
        return cls(require_backend(BackendType.QPDF, name), timeout=timeout)

    def extract(self, source: Path, page_range: PageRange, output: Path) -> Path:
        """Write pages *page_range* of *source* into *output*."""

        self._run(
            ["--empty", "--pages", str(source), page_range.qpdf_spec(), "--", str(output)],
            f"extract {page_range.label()} from {source}",
        )
        return output

    def concatenate(self, inputs: Sequence[Path], output: Path) -> Path:
        """Concatenate *inputs* in order; the first one is the primary document."""

        if not inputs:
            raise ValueError("No input PDFs provided")
        primary = inputs[0]
        arguments = [str(primary), "--pages"]
        for path in inputs:
            arguments.append(str(path))
        arguments.extend(["--", str(output)])
        self._run(arguments, f"concatenate {len(inputs)} file(s) into {output}")
        return output

    def _run(self, arguments: list[str], action: str) -> None:
        result = invoke(self.backend, arguments, timeout=self.timeout)
        # qpdf exits 3 when it succeeded with warnings.
        if result.returncode not in (0, 3):
            _LOGGER.error("qpdf failed to %s with code %s: %s", action, result.returncode, result.stderr)
            raise EngineFailure(
                f"qpdf failed to {action}",
                diagnostics=result.stderr.strip(),
                returncode=result.returncode,
            )
        if result.returncode == 3:
            _LOGGER.warning("qpdf warnings while trying to %s: %s", action, result.stderr.strip())


__all__ = [
    "Backend",
    "BackendType",
    "PageRange",
    "PageTool",
    "count_pages",
    "invoke",
    "require_backend",
]
