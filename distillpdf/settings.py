"""Configuration for :mod:`distillpdf` pipelines."""

from __future__ import annotations

import dataclasses
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Mapping

_LOGGER = logging.getLogger("distillpdf.settings")

DEFAULT_CONTROL_TEMPLATE = Path(__file__).resolve().parent / "data" / "PDFX_def.ps"
DEFAULT_ICC_ROOT = Path("/usr/share/color/icc")
ENV_PREFIX = "DISTILLPDF_"


def default_parallelism() -> int:
    """Available processing units minus a reserve of one."""

    return max(1, (os.cpu_count() or 1) - 1)


@dataclasses.dataclass(frozen=True)
class PipelineSettings:
    """Process-level knobs shared by every job of a controller."""

    temp_root: Path = dataclasses.field(default_factory=lambda: Path(tempfile.gettempdir()))
    icc_root: Path = DEFAULT_ICC_ROOT
    control_template: Path = DEFAULT_CONTROL_TEMPLATE
    timeout: float = 30.0
    parallelism: int = dataclasses.field(default_factory=default_parallelism)
    ghostscript: str = "gs"
    qpdf: str = "qpdf"
    stream_chunk_size: int = 64 * 1024

    def __post_init__(self) -> None:
        object.__setattr__(self, "temp_root", Path(self.temp_root))
        object.__setattr__(self, "icc_root", Path(self.icc_root))
        object.__setattr__(self, "control_template", Path(self.control_template))
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")
        if self.parallelism < 1:
            raise ValueError("parallelism must be at least 1")
        if self.stream_chunk_size < 1:
            raise ValueError("stream_chunk_size must be at least 1")

    def with_overrides(self, **values: Any) -> "PipelineSettings":
        """Return a copy with *values* replacing the current fields."""

        return dataclasses.replace(self, **{k: v for k, v in values.items() if v is not None})

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "PipelineSettings":
        """Build settings from ``DISTILLPDF_*`` environment variables."""

        env = os.environ if environ is None else environ
        defaults = cls()

        def _env_str(name: str, default: str) -> str:
            value = env.get(ENV_PREFIX + name)
            return value.strip() if value and value.strip() else default

        def _env_int(name: str, default: int) -> int:
            value = env.get(ENV_PREFIX + name)
            if value is None or value == "":
                return default
            try:
                return int(value)
            except ValueError:
                _LOGGER.warning("Ignoring invalid %s%s=%r", ENV_PREFIX, name, value)
                return default

        def _env_float(name: str, default: float) -> float:
            value = env.get(ENV_PREFIX + name)
            if value is None or value == "":
                return default
            try:
                return float(value)
            except ValueError:
                _LOGGER.warning("Ignoring invalid %s%s=%r", ENV_PREFIX, name, value)
                return default

        return cls(
            temp_root=Path(_env_str("TEMP_ROOT", str(defaults.temp_root))),
            icc_root=Path(_env_str("ICC_ROOT", str(defaults.icc_root))),
            control_template=Path(_env_str("CONTROL_TEMPLATE", str(defaults.control_template))),
            timeout=_env_float("TIMEOUT", defaults.timeout),
            parallelism=max(1, _env_int("PARALLELISM", defaults.parallelism)),
            ghostscript=_env_str("GHOSTSCRIPT", defaults.ghostscript),
            qpdf=_env_str("QPDF", defaults.qpdf),
            stream_chunk_size=max(1, _env_int("STREAM_CHUNK_SIZE", defaults.stream_chunk_size)),
        )


__all__ = ["PipelineSettings", "default_parallelism", "DEFAULT_CONTROL_TEMPLATE", "DEFAULT_ICC_ROOT"]
