from __future__ import annotations

import threading
from pathlib import Path

import pytest

from conftest import CopyDistiller, PypdfPageTool, page_widths
from distillpdf.backends import PageRange
from distillpdf.exceptions import DistillPDFError, EngineFailure, EngineTimeout, PartialDistillFailure
from distillpdf.presets import DEFAULT_REGISTRY
from distillpdf.splitter import ChunkedDistiller, plan_chunks
from distillpdf.temp import TempTracker

SCREEN = DEFAULT_REGISTRY.resolve("screen")


@pytest.mark.parametrize(
    ("page_count", "parallelism", "expected"),
    [
        (10, 3, [(1, 4), (5, 8), (9, 10)]),
        (5, 5, [(1, 1), (2, 2), (3, 3), (4, 4), (5, 5)]),
        (3, 8, [(1, 1), (2, 2), (3, 3)]),
        (7, 1, [(1, 7)]),
    ],
)
def test_plan_chunks(page_count: int, parallelism: int, expected: list[tuple[int, int]]) -> None:
    assert plan_chunks(page_count, parallelism) == [PageRange(*pair) for pair in expected]


def test_plan_chunks_rejects_empty_documents() -> None:
    with pytest.raises(ValueError):
        plan_chunks(0, 2)


def test_single_worker_never_merges(
    sample_pdf: Path, tracker: TempTracker, copy_distiller: CopyDistiller, page_tool: PypdfPageTool
) -> None:
    chunked = ChunkedDistiller(copy_distiller, tracker, parallelism=1, page_tool=page_tool)

    output = chunked.process(sample_pdf, SCREEN, 5, "Sample")

    assert len(copy_distiller.calls) == 1
    assert copy_distiller.calls[0].input_path == sample_pdf
    assert page_tool.extracted == []
    assert page_tool.concatenated == []
    assert tracker.live == {output}


def test_unknown_page_count_runs_single_shot(
    sample_pdf: Path, tracker: TempTracker, copy_distiller: CopyDistiller, page_tool: PypdfPageTool
) -> None:
    chunked = ChunkedDistiller(copy_distiller, tracker, parallelism=4, page_tool=page_tool)

    chunked.process(sample_pdf, SCREEN, None, "Sample")

    assert len(copy_distiller.calls) == 1
    assert page_tool.concatenated == []


def test_parallel_chunks_keep_page_order(
    pdf_factory, tracker: TempTracker, copy_distiller: CopyDistiller, page_tool: PypdfPageTool
) -> None:
    source = pdf_factory("long.pdf", pages=11)
    chunked = ChunkedDistiller(copy_distiller, tracker, parallelism=4, page_tool=page_tool)

    output = chunked.process(source, SCREEN, 11, "Long")

    assert page_widths(output) == [100 + number for number in range(1, 12)]
    assert page_tool.extracted and sorted(page_tool.extracted, key=lambda r: r.start) == plan_chunks(11, 4)
    assert len(page_tool.concatenated) == 1
    assert len(copy_distiller.calls) == 4
    assert {call.title for call in copy_distiller.calls} == {"Long"}
    # only the merged result survives
    assert tracker.live == {output}


def test_out_of_order_completion_is_merged_in_page_order(
    pdf_factory, tracker: TempTracker, page_tool: PypdfPageTool
) -> None:
    source = pdf_factory("long.pdf", pages=4)
    first_chunk_may_finish = threading.Event()

    class SlowFirstChunk(CopyDistiller):
        def run(self, input_path, output_path, preset, title, **options):
            if page_widths(input_path)[0] == 101:
                first_chunk_may_finish.wait(timeout=5)
            else:
                first_chunk_may_finish.set()
            return super().run(input_path, output_path, preset, title, **options)

    chunked = ChunkedDistiller(SlowFirstChunk(), tracker, parallelism=2, page_tool=page_tool)

    output = chunked.process(source, SCREEN, 4, "Doc")

    assert page_widths(output) == [101, 102, 103, 104]


def test_chunk_failure_cleans_everything(
    pdf_factory, tracker: TempTracker, page_tool: PypdfPageTool
) -> None:
    source = pdf_factory("long.pdf", pages=6)
    failing = CopyDistiller(fail_on=lambda path: page_widths(path)[0] == 103)
    chunked = ChunkedDistiller(failing, tracker, parallelism=3, page_tool=page_tool)

    with pytest.raises(PartialDistillFailure) as excinfo:
        chunked.process(source, SCREEN, 6, "Doc")

    assert excinfo.value.failed_chunks == [PageRange(3, 4)]
    assert isinstance(excinfo.value.first_error, EngineFailure)
    assert excinfo.value.__cause__ is excinfo.value.first_error
    assert page_tool.concatenated == []
    assert tracker.live == frozenset()
    assert list(tracker.root.iterdir()) == []


def test_merge_page_count_mismatch_fails(
    sample_pdf: Path, tracker: TempTracker, copy_distiller: CopyDistiller
) -> None:
    class DroppingPageTool(PypdfPageTool):
        def concatenate(self, inputs, output):
            return super().concatenate(list(inputs)[:-1], output)

    chunked = ChunkedDistiller(copy_distiller, tracker, parallelism=5, page_tool=DroppingPageTool())

    with pytest.raises(EngineFailure, match="expected 5"):
        chunked.process(sample_pdf, SCREEN, 5, "Sample")

    assert tracker.live == frozenset()


def test_single_shot_failure_releases_output(sample_pdf: Path, tracker: TempTracker) -> None:
    failing = CopyDistiller(fail_on=lambda path: True)
    chunked = ChunkedDistiller(failing, tracker, parallelism=1)

    with pytest.raises(EngineFailure):
        chunked.process(sample_pdf, SCREEN, None, "Sample")

    assert tracker.live == frozenset()


def test_page_tool_is_built_lazily(sample_pdf: Path, tracker: TempTracker, copy_distiller: CopyDistiller) -> None:
    built: list[PypdfPageTool] = []

    def factory() -> PypdfPageTool:
        built.append(PypdfPageTool())
        return built[-1]

    single = ChunkedDistiller(copy_distiller, tracker, parallelism=1, page_tool_factory=factory)
    tracker.release(single.process(sample_pdf, SCREEN, 5, "Sample"))
    assert built == []

    parallel = ChunkedDistiller(copy_distiller, tracker, parallelism=2, page_tool_factory=factory)
    tracker.release(parallel.process(sample_pdf, SCREEN, 5, "Sample"))
    assert len(built) == 1


def test_unreadable_merge_is_an_engine_failure(
    pdf_factory, tracker: TempTracker, copy_distiller: CopyDistiller
) -> None:
    class GarbagePageTool(PypdfPageTool):
        def concatenate(self, inputs, output):
            output.write_bytes(b"not a pdf at all")
            return output

    source = pdf_factory("long.pdf", pages=6)
    chunked = ChunkedDistiller(copy_distiller, tracker, parallelism=3, page_tool=GarbagePageTool())

    with pytest.raises(EngineFailure, match="Merged document is unreadable") as excinfo:
        chunked.process(source, SCREEN, 6, "Doc")

    assert excinfo.value.to_response()[0] == 500
    assert excinfo.value.diagnostics
    assert tracker.live == frozenset()
    assert list(tracker.root.iterdir()) == []


def test_rendering_threads_are_shared_between_chunks(
    pdf_factory, tracker: TempTracker, copy_distiller: CopyDistiller, page_tool: PypdfPageTool
) -> None:
    source = pdf_factory("long.pdf", pages=8)
    chunked = ChunkedDistiller(copy_distiller, tracker, parallelism=4, page_tool=page_tool, threads=7)

    tracker.release(chunked.process(source, SCREEN, 8, "Doc"))

    assert [call.threads for call in copy_distiller.calls] == [1, 1, 1, 1]
    assert ChunkedDistiller(copy_distiller, tracker, parallelism=2, threads=7).chunk_threads == 3
    assert ChunkedDistiller(copy_distiller, tracker, parallelism=2).chunk_threads is None


def test_chunk_timeout_keeps_timeout_status(
    pdf_factory, tracker: TempTracker, page_tool: PypdfPageTool
) -> None:
    class TimingOutChunk(CopyDistiller):
        def run(self, input_path, output_path, preset, title, **options):
            if page_widths(input_path)[0] == 101:
                raise EngineTimeout("ghostscript timed out after 5s")
            return super().run(input_path, output_path, preset, title, **options)

    source = pdf_factory("long.pdf", pages=4)
    chunked = ChunkedDistiller(TimingOutChunk(), tracker, parallelism=2, page_tool=page_tool)

    with pytest.raises(PartialDistillFailure) as excinfo:
        chunked.process(source, SCREEN, 4, "Doc")

    assert isinstance(excinfo.value, DistillPDFError)
    assert excinfo.value.status_code == 504
    assert tracker.live == frozenset()
