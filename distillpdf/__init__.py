"""Distillation pipeline turning rendered PDFs into deliverable documents."""

from __future__ import annotations

from .backends import Backend, BackendType, PageRange, PageTool, count_pages
from .distiller import Distiller, DistillOutcome, build_arguments
from .exceptions import (
    DistillPDFError,
    EngineFailure,
    EngineTimeout,
    EngineUnavailable,
    ForbiddenProfilePath,
    PageCountUnparseable,
    PartialDistillFailure,
    UnknownPreset,
    UpstreamNotReady,
)
from .pipeline import PipelineController, PipelineJob, PipelineResult, PipelineState
from .presets import DEFAULT_REGISTRY, Preset, PresetRegistry, Quality, merge_presets
from .settings import PipelineSettings
from .splitter import ChunkedDistiller, plan_chunks
from .temp import TempTracker

__all__ = [
    "Backend",
    "BackendType",
    "ChunkedDistiller",
    "DEFAULT_REGISTRY",
    "DistillOutcome",
    "DistillPDFError",
    "Distiller",
    "EngineFailure",
    "EngineTimeout",
    "EngineUnavailable",
    "ForbiddenProfilePath",
    "PageCountUnparseable",
    "PageRange",
    "PageTool",
    "PartialDistillFailure",
    "PipelineController",
    "PipelineJob",
    "PipelineResult",
    "PipelineSettings",
    "PipelineState",
    "Preset",
    "PresetRegistry",
    "Quality",
    "TempTracker",
    "UnknownPreset",
    "UpstreamNotReady",
    "build_arguments",
    "count_pages",
    "merge_presets",
    "plan_chunks",
]
