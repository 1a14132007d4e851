"""Ownership and cleanup of intermediate files."""

from __future__ import annotations

import logging
import threading
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from .utils import PathLike, resolve_path

_LOGGER = logging.getLogger("distillpdf.temp")


class TempTracker:
    """Hands out unique artifact paths under *root* and removes them exactly once.

    A path is removed only while it is tracked, so a second ``release`` of
    the same path is a no-op and a path the tracker never handed out (or
    adopted) is never touched.
    """

    def __init__(self, root: PathLike, *, prefix: str = "distillpdf-") -> None:
        self.root = resolve_path(root)
        self.prefix = prefix
        self._live: set[Path] = set()
        self._lock = threading.Lock()

    def acquire(self, suffix: str = "") -> Path:
        """Return a fresh, tracked path. The file itself is not created."""

        self.root.mkdir(parents=True, exist_ok=True)
        with self._lock:
            while True:
                path = self.root / f"{self.prefix}{uuid.uuid4().hex}{suffix}"
                if path not in self._live and not path.exists():
                    break
            self._live.add(path)
        _LOGGER.debug("Acquired temp artifact %s", path)
        return path

    def adopt(self, path: PathLike) -> Path:
        """Take ownership of an existing file produced elsewhere."""

        resolved = resolve_path(path)
        with self._lock:
            self._live.add(resolved)
        _LOGGER.debug("Adopted temp artifact %s", resolved)
        return resolved

    def release(self, path: PathLike | None) -> bool:
        """Remove *path* if it is still tracked. Returns ``True`` if it was."""

        if path is None:
            return False
        resolved = resolve_path(path)
        with self._lock:
            if resolved not in self._live:
                return False
            self._live.discard(resolved)
        try:
            resolved.unlink(missing_ok=True)
        except OSError as exc:
            _LOGGER.warning("Failed to remove temp artifact %s: %s", resolved, exc)
        else:
            _LOGGER.debug("Released temp artifact %s", resolved)
        return True

    def release_all(self) -> int:
        """Release every live artifact and return how many there were."""

        with self._lock:
            paths = list(self._live)
        return sum(1 for path in paths if self.release(path))

    @property
    def live(self) -> frozenset[Path]:
        with self._lock:
            return frozenset(self._live)

    @contextmanager
    def scoped(self, suffix: str = "") -> Iterator[Path]:
        """Acquire a path that is released when the ``with`` block exits."""

        path = self.acquire(suffix)
        try:
            yield path
        finally:
            self.release(path)

    def __enter__(self) -> "TempTracker":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release_all()


__all__ = ["TempTracker"]
