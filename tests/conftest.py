from __future__ import annotations

import shutil
import sys
from pathlib import Path
from types import SimpleNamespace
from typing import Callable, Sequence

import pytest
from pypdf import PdfReader, PdfWriter

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from distillpdf.backends import PageRange  # noqa: E402
from distillpdf.distiller import DistillOutcome  # noqa: E402
from distillpdf.settings import PipelineSettings  # noqa: E402
from distillpdf.temp import TempTracker  # noqa: E402

requires_gs = pytest.mark.skipif(shutil.which("gs") is None, reason="ghostscript not installed")
requires_qpdf = pytest.mark.skipif(shutil.which("qpdf") is None, reason="qpdf not installed")


def page_widths(path: Path) -> list[int]:
    """Page widths identify pages: page N of the fixtures is ``100 + N`` wide."""

    return [int(page.mediabox.width) for page in PdfReader(str(path)).pages]


@pytest.fixture()
def pdf_factory(tmp_path: Path) -> Callable[..., Path]:
    def _create(filename: str = "rendered.pdf", pages: int = 5, title: str | None = "Sample") -> Path:
        path = tmp_path / filename
        writer = PdfWriter()
        for number in range(1, pages + 1):
            writer.add_blank_page(width=100 + number, height=200)
        if title is not None:
            writer.add_metadata({"/Producer": "distillpdf-tests", "/Title": title})
        with path.open("wb") as stream:
            writer.write(stream)
        return path

    return _create


@pytest.fixture()
def sample_pdf(pdf_factory: Callable[..., Path]) -> Path:
    return pdf_factory()


@pytest.fixture()
def temp_root(tmp_path: Path) -> Path:
    root = tmp_path / "artifacts"
    root.mkdir()
    return root


@pytest.fixture()
def icc_root(tmp_path: Path) -> Path:
    root = tmp_path / "icc"
    root.mkdir()
    (root / "coated.icc").write_bytes(b"fake-icc")
    return root


@pytest.fixture()
def settings(temp_root: Path, icc_root: Path) -> PipelineSettings:
    return PipelineSettings(temp_root=temp_root, icc_root=icc_root, timeout=5, parallelism=4)


@pytest.fixture()
def tracker(temp_root: Path) -> TempTracker:
    return TempTracker(temp_root)


class CopyDistiller:
    """Stands in for :class:`distillpdf.distiller.Distiller`, copying input to output."""

    def __init__(self, fail_on: Callable[[Path], bool] | None = None) -> None:
        self.calls: list[SimpleNamespace] = []
        self.fail_on = fail_on

    def run(
        self, input_path: Path, output_path: Path, preset, title: str, *, threads: int | None = None
    ) -> DistillOutcome:
        self.calls.append(
            SimpleNamespace(
                input_path=input_path, output_path=output_path, preset=preset, title=title, threads=threads
            )
        )
        if self.fail_on is not None and self.fail_on(input_path):
            from distillpdf.exceptions import EngineFailure

            raise EngineFailure("chunk failed", diagnostics="boom", returncode=1)
        shutil.copyfile(input_path, output_path)
        return DistillOutcome(output_path=output_path, elapsed=0.0)


class PypdfPageTool:
    """Stands in for the qpdf page tool using pypdf."""

    def __init__(self) -> None:
        self.extracted: list[PageRange] = []
        self.concatenated: list[list[Path]] = []

    def extract(self, source: Path, page_range: PageRange, output: Path) -> Path:
        self.extracted.append(page_range)
        reader = PdfReader(str(source))
        writer = PdfWriter()
        for index in range(page_range.start - 1, page_range.end):
            writer.add_page(reader.pages[index])
        with output.open("wb") as handle:
            writer.write(handle)
        return output

    def concatenate(self, inputs: Sequence[Path], output: Path) -> Path:
        self.concatenated.append(list(inputs))
        writer = PdfWriter()
        for path in inputs:
            for page in PdfReader(str(path)).pages:
                writer.add_page(page)
        with output.open("wb") as handle:
            writer.write(handle)
        return output


@pytest.fixture()
def copy_distiller() -> CopyDistiller:
    return CopyDistiller()


@pytest.fixture()
def page_tool() -> PypdfPageTool:
    return PypdfPageTool()


class RecordingSink:
    """Binary sink collecting written bytes; can simulate a consumer disconnect."""

    def __init__(self, fail_after: int | None = None) -> None:
        self.chunks: list[bytes] = []
        self.fail_after = fail_after
        self.closed = False

    def write(self, data: bytes) -> int:
        if self.fail_after is not None and len(self.chunks) >= self.fail_after:
            raise BrokenPipeError("consumer went away")
        self.chunks.append(bytes(data))
        return len(data)

    def flush(self) -> None:
        pass

    @property
    def data(self) -> bytes:
        return b"".join(self.chunks)
