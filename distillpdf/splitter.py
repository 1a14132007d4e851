"""Parallel distillation of large documents in contiguous page chunks."""

from __future__ import annotations

import logging
import math
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Callable

from pypdf import PdfReader

from .backends import PageRange, PageTool
from .distiller import Distiller
from .exceptions import EngineFailure, PartialDistillFailure
from .presets import Preset
from .temp import TempTracker

_LOGGER = logging.getLogger("distillpdf.splitter")


def plan_chunks(page_count: int, parallelism: int) -> list[PageRange]:
    """Partition ``1..page_count`` into contiguous ranges of equal size.

    Each range holds ``ceil(page_count / parallelism)`` pages except the
    last one, which may be shorter.
    """

    if page_count < 1:
        raise ValueError("page_count must be at least 1")
    if parallelism < 1:
        raise ValueError("parallelism must be at least 1")
    size = math.ceil(page_count / parallelism)
    return [
        PageRange(start, min(start + size - 1, page_count))
        for start in range(1, page_count + 1, size)
    ]


def _page_count(path: Path) -> int:
    try:
        return len(PdfReader(str(path)).pages)
    except Exception as exc:  # pypdf raises a variety of errors on damaged files
        _LOGGER.error("Merged document %s is unreadable: %s", path, exc)
        raise EngineFailure("Merged document is unreadable", diagnostics=str(exc)) from exc


class ChunkedDistiller:
    """Splits, distills and re-merges a document, or distills it in one go."""

    def __init__(
        self,
        distiller: Distiller,
        tracker: TempTracker,
        *,
        parallelism: int = 1,
        page_tool: PageTool | None = None,
        page_tool_factory: Callable[[], PageTool] | None = None,
        threads: int | None = None,
    ) -> None:
        self.distiller = distiller
        self.tracker = tracker
        self.parallelism = max(1, parallelism)
        self.threads = threads
        self._page_tool = page_tool
        self._page_tool_factory = page_tool_factory

    @property
    def chunk_threads(self) -> int | None:
        """Rendering threads per chunk, sharing *threads* across concurrent chunks."""

        if not self.threads:
            return None
        return max(1, self.threads // self.parallelism)

    @property
    def page_tool(self) -> PageTool:
        if self._page_tool is None:
            if self._page_tool_factory is None:
                raise ValueError("ChunkedDistiller requires a page tool to split documents")
            self._page_tool = self._page_tool_factory()
        return self._page_tool

    def process(
        self,
        input_path: Path,
        preset: Preset,
        page_count: int | None,
        title: str,
    ) -> Path:
        """Distill *input_path* and return the tracked path of the result.

        The caller owns the returned artifact and must release it.
        """

        if self.parallelism == 1 or not page_count:
            return self._single(input_path, preset, title)
        ranges = plan_chunks(page_count, self.parallelism)
        if len(ranges) == 1:
            return self._single(input_path, preset, title)
        return self._parallel(input_path, preset, page_count, title, ranges)

    def _single(self, input_path: Path, preset: Preset, title: str) -> Path:
        output = self.tracker.acquire(".pdf")
        try:
            self.distiller.run(input_path, output, preset, title)
        except BaseException:
            self.tracker.release(output)
            raise
        return output

    def _distill_chunk(
        self, input_path: Path, page_range: PageRange, preset: Preset, title: str
    ) -> Path:
        part = self.tracker.acquire(f".{page_range.label()}.pdf")
        try:
            self.page_tool.extract(input_path, page_range, part)
            output = self.tracker.acquire(f".{page_range.label()}.out.pdf")
            try:
                self.distiller.run(part, output, preset, title, threads=self.chunk_threads)
            except BaseException:
                self.tracker.release(output)
                raise
        finally:
            self.tracker.release(part)
        return output

    def _parallel(
        self,
        input_path: Path,
        preset: Preset,
        page_count: int,
        title: str,
        ranges: list[PageRange],
    ) -> Path:
        outputs: list[Path | None] = [None] * len(ranges)
        failures: list[PageRange] = []
        first_error: BaseException | None = None
        # Resolve the page tool before fanning out so a missing qpdf fails once.
        page_tool = self.page_tool

        _LOGGER.debug(
            "Distilling %s in %d chunk(s) with %d worker(s)",
            input_path,
            len(ranges),
            self.parallelism,
        )
        try:
            with ThreadPoolExecutor(max_workers=self.parallelism) as executor:
                futures: dict[Future, int] = {
                    executor.submit(self._distill_chunk, input_path, page_range, preset, title): index
                    for index, page_range in enumerate(ranges)
                }
                for future in as_completed(futures):
                    index = futures[future]
                    if future.cancelled():
                        continue
                    error = future.exception()
                    if error is None:
                        outputs[index] = future.result()
                        continue
                    failures.append(ranges[index])
                    if first_error is None:
                        first_error = error
                        _LOGGER.error(
                            "Chunk %s of %s failed: %s", ranges[index].label(), input_path, error
                        )
                        for pending in futures:
                            pending.cancel()

            if first_error is not None:
                raise PartialDistillFailure(failures, first_error) from first_error

            merged = self.tracker.acquire(".pdf")
            try:
                page_tool.concatenate([path for path in outputs if path is not None], merged)
                merged_pages = _page_count(merged)
                if merged_pages != page_count:
                    raise EngineFailure(
                        f"Merged document has {merged_pages} page(s), expected {page_count}"
                    )
            except BaseException:
                self.tracker.release(merged)
                raise
        finally:
            for path in outputs:
                self.tracker.release(path)

        _LOGGER.info("Merged %d chunk(s) of %s", len(ranges), input_path)
        return merged


__all__ = ["ChunkedDistiller", "plan_chunks"]
