"""Utility helpers for :mod:`distillpdf`."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import IO, MutableMapping, Sequence, Union

PathLike = Union[str, os.PathLike]

_LOGGER = logging.getLogger("distillpdf")


def resolve_path(path: PathLike) -> Path:
    """Resolve *path* into an absolute :class:`~pathlib.Path`."""

    return Path(path).expanduser().resolve()


def is_within(path: Path, root: Path) -> bool:
    """Return ``True`` when the resolved *path* lies inside *root*."""

    try:
        resolve_path(path).relative_to(resolve_path(root))
    except ValueError:
        return False
    return True


def which(executables: Sequence[str]) -> str | None:
    """Return the first executable from *executables* found on ``PATH``."""

    for candidate in executables:
        found = shutil.which(candidate)
        if found:
            _LOGGER.debug("Detected external tool: %s -> %s", candidate, found)
            return found
    return None


def run_subprocess(
    command: Sequence[str],
    *,
    timeout: float | None = None,
    stdout: IO[bytes] | None = None,
    env: MutableMapping[str, str] | None = None,
) -> subprocess.CompletedProcess:
    """Run *command* and capture its diagnostics.

    Parameters
    ----------
    command:
        Command and arguments to execute.
    timeout:
        Wall-clock limit in seconds. On expiry the child is killed and
        :class:`subprocess.TimeoutExpired` propagates.
    stdout:
        Binary handle receiving standard output. When omitted, standard
        output is captured and decoded like standard error.
    env:
        Optional environment overrides.
    """

    _LOGGER.debug("Executing command: %s", " ".join(command))
    completed = subprocess.run(
        list(command),
        env=env,
        stdout=stdout if stdout is not None else subprocess.PIPE,
        stderr=subprocess.PIPE,
        timeout=timeout,
        check=False,
    )
    stdout_text = completed.stdout.decode("utf-8", "replace") if completed.stdout else ""
    stderr_text = completed.stderr.decode("utf-8", "replace") if completed.stderr else ""
    _LOGGER.debug(
        "Command finished with exit code %s\nstdout: %s\nstderr: %s",
        completed.returncode,
        stdout_text,
        stderr_text,
    )
    return subprocess.CompletedProcess(
        completed.args, completed.returncode, stdout_text, stderr_text
    )


def escape_ps_string(value: str) -> str:
    """Escape *value* for use inside a PostScript ``( ... )`` string literal."""

    return (
        value.replace("\\", "\\\\")
        .replace("(", "\\(")
        .replace(")", "\\)")
        .replace("/", "\\/")
    )


__all__ = [
    "PathLike",
    "resolve_path",
    "is_within",
    "which",
    "run_subprocess",
    "escape_ps_string",
]
