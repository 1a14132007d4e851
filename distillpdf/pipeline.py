"""Orchestration of one document from rendered PDF to delivered bytes.

A job moves through ``rendered -> page_counting? -> distilling? ->
streaming -> cleaned``. Page counting and distillation only run when the
preset asks for them. Any error before streaming skips straight to
cleanup, so no bytes are written for a failed job. A consumer that goes
away while bytes are being written is not an error: copying stops and
cleanup still runs.
"""

from __future__ import annotations

import dataclasses
import logging
from enum import Enum
from functools import cached_property
from pathlib import Path, PurePosixPath
from typing import BinaryIO
from urllib.parse import urlparse

from .backends import Backend, BackendType, PageTool, count_pages, require_backend
from .distiller import Distiller
from .exceptions import DistillPDFError, UpstreamNotReady
from .presets import DEFAULT_REGISTRY, Preset, PresetRegistry
from .settings import PipelineSettings
from .splitter import ChunkedDistiller
from .temp import TempTracker
from .utils import PathLike, resolve_path

_LOGGER = logging.getLogger("distillpdf.pipeline")

CONTENT_TYPE = "application/pdf"
MAX_TITLE_LENGTH = 123


class PipelineState(str, Enum):
    RENDERED = "rendered"
    PAGE_COUNTING = "page_counting"
    DISTILLING = "distilling"
    STREAMING = "streaming"
    CLEANED = "cleaned"


def derive_title(title: str | None, location: str | None = None) -> str:
    """Return *title*, or the file stem of *location*, or ``document``."""

    if title:
        return title
    if location:
        stem = PurePosixPath(urlparse(location).path).stem
        if stem:
            return stem
    return "document"


def attachment_filename(title: str) -> str:
    return title[:MAX_TITLE_LENGTH] + ".pdf"


@dataclasses.dataclass
class PipelineJob:
    """One document-generation request."""

    input_path: Path
    preset: Preset
    title: str = ""
    page_count: int | None = None
    upstream_status: int = 200
    upstream_reason: str = ""
    location: str = ""

    def __post_init__(self) -> None:
        self.input_path = resolve_path(self.input_path)
        self.title = derive_title(self.title, self.location)


@dataclasses.dataclass
class PipelineResult:
    """What the host middleware needs to answer the request."""

    filename: str
    status: int = 200
    content_type: str = CONTENT_TYPE
    page_count: int | None = None
    bytes_written: int = 0
    disconnected: bool = False
    states: list[PipelineState] = dataclasses.field(default_factory=list)

    @property
    def headers(self) -> dict[str, str]:
        safe_name = self.filename.replace('"', "'")
        headers = {
            "Content-Type": self.content_type,
            "Content-Disposition": f'attachment; filename="{safe_name}"',
        }
        if self.page_count is not None:
            headers["X-Page-Count"] = str(self.page_count)
        return headers


class PipelineController:
    """Runs :class:`PipelineJob` instances against an output sink."""

    def __init__(
        self,
        settings: PipelineSettings | None = None,
        registry: PresetRegistry = DEFAULT_REGISTRY,
        *,
        tracker: TempTracker | None = None,
        distiller: Distiller | None = None,
        page_tool: PageTool | None = None,
    ) -> None:
        self.settings = settings or PipelineSettings()
        self.registry = registry
        self.tracker = tracker or TempTracker(self.settings.temp_root)
        self.distiller = distiller or Distiller(
            self.settings, self.tracker, threads=self.settings.parallelism
        )
        self.page_tool = page_tool

    @cached_property
    def ghostscript(self) -> Backend:
        return require_backend(BackendType.GHOSTSCRIPT, self.settings.ghostscript)

    def _make_page_tool(self) -> PageTool:
        return PageTool.from_name(self.settings.qpdf, timeout=self.settings.timeout)

    def resolve_job(
        self,
        input_path: PathLike,
        preset_name: str | None = None,
        **job_fields: object,
    ) -> PipelineJob:
        """Build a job for *input_path* using the preset called *preset_name*."""

        preset = self.registry.resolve(preset_name)
        return PipelineJob(input_path=Path(input_path), preset=preset, **job_fields)

    def parallelism_for(self, preset: Preset) -> int:
        return max(1, min(preset.parallelism_hint, self.settings.parallelism))

    def count_pages(self, path: Path) -> int:
        return count_pages(self.ghostscript, path, timeout=self.settings.timeout)

    def run(self, job: PipelineJob, sink: BinaryIO) -> PipelineResult:
        """Process *job* and copy the final document into *sink*.

        Raises :class:`~distillpdf.exceptions.DistillPDFError` subclasses for
        every pipeline failure; no byte reaches *sink* in that case.
        """

        preset = job.preset
        result = PipelineResult(filename=attachment_filename(job.title))
        result.states.append(PipelineState.RENDERED)
        input_path = self.tracker.adopt(job.input_path)
        output: Path | None = None
        try:
            if job.upstream_status != 200:
                raise UpstreamNotReady(job.upstream_status, job.upstream_reason)

            page_count = job.page_count
            parallelism = self.parallelism_for(preset)
            needs_count = preset.report_page_count or (preset.distills and parallelism > 1)
            if needs_count and page_count is None:
                result.states.append(PipelineState.PAGE_COUNTING)
                page_count = self.count_pages(input_path)
            if preset.report_page_count:
                result.page_count = page_count

            final = input_path
            if preset.distills:
                result.states.append(PipelineState.DISTILLING)
                chunked = ChunkedDistiller(
                    self.distiller,
                    self.tracker,
                    parallelism=parallelism,
                    page_tool=self.page_tool,
                    page_tool_factory=self._make_page_tool,
                    threads=self.settings.parallelism,
                )
                output = chunked.process(input_path, preset, page_count, job.title)
                final = output

            _LOGGER.debug("Streaming %s for %r", final, job.title)
            result.states.append(PipelineState.STREAMING)
            result.bytes_written, result.disconnected = self._stream(final, sink)
        except DistillPDFError as exc:
            _LOGGER.error(
                "Pipeline failed for %r with preset %s: %s", job.title, preset.name, exc.message
            )
            raise
        finally:
            self.tracker.release(output)
            self.tracker.release(input_path)
            result.states.append(PipelineState.CLEANED)

        _LOGGER.info(
            "Delivered %r (%d bytes, preset %s)", result.filename, result.bytes_written, preset.name
        )
        return result

    def _stream(self, path: Path, sink: BinaryIO) -> tuple[int, bool]:
        written = 0
        chunk_size = self.settings.stream_chunk_size
        with path.open("rb") as source:
            while True:
                block = source.read(chunk_size)
                if not block:
                    break
                if getattr(sink, "closed", False):
                    _LOGGER.warning("Consumer closed the output after %d bytes", written)
                    return written, True
                try:
                    sink.write(block)
                except (OSError, ValueError) as exc:
                    _LOGGER.warning("Consumer disconnected after %d bytes: %s", written, exc)
                    return written, True
                written += len(block)
        flush = getattr(sink, "flush", None)
        if flush is not None:
            try:
                flush()
            except (OSError, ValueError) as exc:
                _LOGGER.warning("Consumer disconnected while flushing: %s", exc)
                return written, True
        return written, False


__all__ = [
    "CONTENT_TYPE",
    "PipelineController",
    "PipelineJob",
    "PipelineResult",
    "PipelineState",
    "attachment_filename",
    "derive_title",
]
