"""Ghostscript invocation for a single distillation task."""

from __future__ import annotations

import dataclasses
import logging
import re
import threading
import time
from functools import cached_property
from pathlib import Path

from pypdf import PdfReader

from .backends import Backend, BackendType, invoke, require_backend
from .exceptions import EngineFailure
from .presets import Preset
from .settings import PipelineSettings, default_parallelism
from .temp import TempTracker
from .utils import PathLike, escape_ps_string, resolve_path

_LOGGER = logging.getLogger("distillpdf.distiller")

CONTROL_MARKER = re.compile(r"!(ICC|CONDITION|TITLE|INTENT)!")

RENDER_INTENTS = {
    0: "Perceptual",
    1: "RelativeColorimetric",
    2: "Saturation",
    3: "AbsoluteColorimetric",
}


class ControlFileTemplates:
    """Process-wide cache of control-file templates keyed by source path.

    Entries are loaded lazily and never changed afterwards. Two threads
    racing on a cold key both read the same file; the first stored value
    wins and is what every caller sees from then on.
    """

    def __init__(self) -> None:
        self._cache: dict[Path, str] = {}
        self._lock = threading.Lock()

    def get(self, source: PathLike) -> str:
        key = resolve_path(source)
        with self._lock:
            cached = self._cache.get(key)
        if cached is not None:
            return cached
        text = key.read_text(encoding="utf-8")
        with self._lock:
            return self._cache.setdefault(key, text)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def __contains__(self, source: object) -> bool:
        if not isinstance(source, (str, Path)):
            return False
        with self._lock:
            return resolve_path(source) in self._cache


TEMPLATES = ControlFileTemplates()


def render_control_file(template: str, *, icc: Path, condition: str, title: str, intent: int) -> str:
    """Fill the four markers of a control-file template with escaped values."""

    values = {
        "ICC": str(icc),
        "CONDITION": condition,
        "TITLE": title,
        "INTENT": RENDER_INTENTS.get(intent, str(intent)),
    }
    # single pass, so marker text inside a value is left alone
    return CONTROL_MARKER.sub(lambda match: escape_ps_string(values[match.group(1)]), template)


def base_arguments(threads: int) -> list[str]:
    return [
        "-q",
        "-sstdout=%stderr",
        "-dBATCH",
        "-dNOPAUSE",
        # absolute paths cannot be opened otherwise
        "-dNOSAFER",
        f"-dNumRenderingThreads={threads}",
        # can be prohibitively slow
        "-dDetectDuplicateImages=false",
        "-sDEVICE=pdfwrite",
        "-sOutputFile=-",
    ]


def quality_arguments(preset: Preset) -> list[str]:
    if preset.quality is None:
        raise ValueError(f"Preset {preset.name!r} does not request distillation")
    preserve = "true" if preset.quality.for_screen else "false"
    return [
        f"-dPreserveAnnots={preserve}",
        f"-dPDFSETTINGS=/{preset.quality.value}",
    ]


def color_arguments(preset: Preset) -> list[str]:
    if preset.quality is None or preset.quality.for_screen:
        return []
    if not preset.color_strategy or preset.icc_profile is not None:
        return []
    return [f"-sColorConversionStrategy={preset.color_strategy}"]


def profile_arguments(preset: Preset, control_file: Path | None) -> list[str]:
    if preset.icc_profile is None or control_file is None:
        return []
    return [
        "-dPDFX=true",
        f"-dRenderIntent={preset.render_intent}",
        "-sColorConversionStrategy=CMYK",
        str(control_file),
    ]


def metadata_arguments(title: str) -> list[str]:
    return ["-c", f"[ /Title ({escape_ps_string(title)}) /DOCINFO pdfmark", "-f"]


def build_arguments(
    preset: Preset,
    input_path: Path,
    title: str,
    *,
    threads: int,
    control_file: Path | None = None,
) -> list[str]:
    """Assemble the Ghostscript argument list in its fixed order."""

    arguments = base_arguments(threads)
    arguments += quality_arguments(preset)
    arguments += color_arguments(preset)
    arguments += list(preset.extra_flags)
    arguments += profile_arguments(preset, control_file)
    arguments += metadata_arguments(title)
    arguments.append(str(input_path))
    return arguments


@dataclasses.dataclass(slots=True)
class DistillOutcome:
    """Represents the outcome of one distiller run."""

    output_path: Path
    elapsed: float
    diagnostics: str = ""


def _readable_pdf(path: Path) -> bool:
    if not path.exists() or path.stat().st_size == 0:
        return False
    try:
        reader = PdfReader(str(path))
        return len(reader.pages) > 0
    except Exception as exc:  # pypdf raises a variety of errors on damaged files
        _LOGGER.debug("Distilled output %s is unreadable: %s", path, exc)
        return False


class Distiller:
    """Runs Ghostscript over one input file under a :class:`Preset`."""

    def __init__(
        self,
        settings: PipelineSettings,
        tracker: TempTracker,
        *,
        threads: int | None = None,
        templates: ControlFileTemplates = TEMPLATES,
    ) -> None:
        self.settings = settings
        self.tracker = tracker
        self.threads = threads or default_parallelism()
        self.templates = templates

    @cached_property
    def backend(self) -> Backend:
        return require_backend(BackendType.GHOSTSCRIPT, self.settings.ghostscript)

    def _write_control_file(self, preset: Preset, title: str) -> Path:
        template = self.templates.get(self.settings.control_template)
        content = render_control_file(
            template,
            icc=preset.icc_profile,
            condition=preset.output_condition,
            title=title,
            intent=preset.render_intent,
        )
        path = self.tracker.acquire(".ps")
        path.write_text(content, encoding="utf-8")
        return path

    def run(
        self,
        input_path: Path,
        output_path: Path,
        preset: Preset,
        title: str,
        *,
        threads: int | None = None,
    ) -> DistillOutcome:
        """Distill *input_path* into *output_path*.

        *threads* overrides the rendering thread count for this run only.

        Raises :class:`EngineFailure` on a non-zero exit, or on a clean exit
        whose diagnostics come with an unreadable output.
        """

        backend = self.backend
        control_file: Path | None = None
        started = time.perf_counter()
        try:
            if preset.icc_profile is not None:
                control_file = self._write_control_file(preset, title)
            arguments = build_arguments(
                preset,
                input_path,
                title,
                threads=threads or self.threads,
                control_file=control_file,
            )
            _LOGGER.debug("gs %s", " ".join(arguments))
            with output_path.open("wb") as sink:
                result = invoke(backend, arguments, timeout=self.settings.timeout, stdout=sink)
        finally:
            self.tracker.release(control_file)

        elapsed = time.perf_counter() - started
        diagnostics = result.stderr.strip()
        if result.returncode != 0:
            _LOGGER.error("gs exited with code %s: %s", result.returncode, diagnostics)
            raise EngineFailure(
                diagnostics or f"gs exited with code {result.returncode}",
                diagnostics=diagnostics,
                returncode=result.returncode,
            )
        if not _readable_pdf(output_path):
            _LOGGER.error("gs produced unreadable output for %s: %s", input_path, diagnostics)
            raise EngineFailure(
                diagnostics or "gs produced no readable output",
                diagnostics=diagnostics,
                returncode=result.returncode,
            )
        if diagnostics:
            _LOGGER.warning("gs diagnostics for %s: %s", input_path, diagnostics)

        _LOGGER.info(
            "Distilled %s with preset %s in %.2fs", input_path, preset.name, elapsed
        )
        return DistillOutcome(output_path=output_path, elapsed=elapsed, diagnostics=diagnostics)


__all__ = [
    "ControlFileTemplates",
    "Distiller",
    "DistillOutcome",
    "RENDER_INTENTS",
    "TEMPLATES",
    "base_arguments",
    "build_arguments",
    "color_arguments",
    "metadata_arguments",
    "profile_arguments",
    "quality_arguments",
    "render_control_file",
]
