"""Named distillation presets and their registry."""

from __future__ import annotations

import dataclasses
import logging
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from .exceptions import ForbiddenProfilePath, UnknownPreset
from .settings import DEFAULT_ICC_ROOT
from .utils import PathLike, is_within, resolve_path

_LOGGER = logging.getLogger("distillpdf.presets")

DEFAULT_PRESET = "default"


class Quality(str, Enum):
    """Ghostscript ``PDFSETTINGS`` tiers.

    screen: 72 dpi, ebook: 150 dpi, printer: 300 dpi,
    prepress: 300 dpi with color preserving.
    """

    SCREEN = "screen"
    EBOOK = "ebook"
    PRINTER = "printer"
    PREPRESS = "prepress"

    @property
    def for_screen(self) -> bool:
        return self in (Quality.SCREEN, Quality.EBOOK)


@dataclasses.dataclass(frozen=True)
class Preset:
    """A validated bundle of distillation parameters."""

    name: str
    quality: Quality | None = None
    color_strategy: str | None = None
    resolution_multiplier: float = 1
    report_page_count: bool = False
    parallelism_hint: int = 1
    icc_profile: Path | None = None
    output_condition: str = ""
    render_intent: int = 3
    extra_flags: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.resolution_multiplier < 1:
            raise ValueError(f"Preset {self.name!r}: resolution_multiplier must be >= 1")
        if self.parallelism_hint < 1:
            raise ValueError(f"Preset {self.name!r}: parallelism_hint must be >= 1")

    @property
    def distills(self) -> bool:
        return self.quality is not None


_FIELDS = {field.name for field in dataclasses.fields(Preset)} - {"name"}

# camelCase keys accepted from legacy JSON preset configuration.
_ALIASES = {
    "scale": "resolution_multiplier",
    "pageCount": "report_page_count",
    "page_count": "report_page_count",
    "icc": "icc_profile",
    "condition": "output_condition",
    "others": "extra_flags",
    "colorStrategy": "color_strategy",
    "parallelism": "parallelism_hint",
}


def coerce_quality(value: object, *, preset: str = "") -> Quality | None:
    """Map *value* to :class:`Quality`; unknown tiers disable distillation."""

    if value is None or value is False or value == "":
        return None
    if isinstance(value, Quality):
        return value
    try:
        return Quality(str(value))
    except ValueError:
        _LOGGER.warning("Unknown pdf preset quality %r in preset %r", value, preset)
        return None


def resolve_icc_profile(profile: PathLike, icc_root: PathLike) -> Path:
    """Resolve *profile* under *icc_root*, refusing anything outside of it."""

    root = resolve_path(icc_root)
    candidate = resolve_path(root / profile)
    if not is_within(candidate, root):
        raise ForbiddenProfilePath(str(profile))
    return candidate


def _normalise(values: Mapping[str, Any]) -> dict[str, Any]:
    normalised: dict[str, Any] = {}
    for key, value in values.items():
        key = _ALIASES.get(key, key)
        if key not in _FIELDS:
            raise ValueError(f"Unknown preset field: {key}")
        normalised[key] = value
    return normalised


def build_preset(
    name: str,
    values: Mapping[str, Any],
    *,
    base: Preset | None = None,
    icc_root: PathLike = DEFAULT_ICC_ROOT,
) -> Preset:
    """Return a new :class:`Preset` with *values* applied over *base*."""

    fields = dataclasses.asdict(base) if base is not None else {}
    fields.pop("name", None)
    updates = _normalise(values)
    fields.update(updates)

    fields["quality"] = coerce_quality(fields.get("quality"), preset=name)
    fields["extra_flags"] = tuple(str(flag) for flag in fields.get("extra_flags") or () if flag)
    if "resolution_multiplier" in fields:
        fields["resolution_multiplier"] = float(fields["resolution_multiplier"])
    if "parallelism_hint" in fields:
        fields["parallelism_hint"] = int(fields["parallelism_hint"])
    if "render_intent" in fields:
        fields["render_intent"] = int(fields["render_intent"])
    if "report_page_count" in fields:
        fields["report_page_count"] = bool(fields["report_page_count"])
    if fields.get("output_condition") is None:
        fields["output_condition"] = ""

    profile = fields.get("icc_profile")
    if profile and "icc_profile" in updates:
        fields["icc_profile"] = resolve_icc_profile(profile, icc_root)
    elif not profile:
        fields["icc_profile"] = None
    return Preset(name=name, **fields)


class PresetRegistry:
    """Read-only mapping of preset names to :class:`Preset` records."""

    def __init__(self, presets: Iterable[Preset]) -> None:
        table = {preset.name: preset for preset in presets}
        if DEFAULT_PRESET not in table:
            table[DEFAULT_PRESET] = Preset(DEFAULT_PRESET)
        self._presets = MappingProxyType(table)

    def __contains__(self, name: object) -> bool:
        return name in self._presets

    def __len__(self) -> int:
        return len(self._presets)

    def names(self) -> list[str]:
        return sorted(self._presets)

    def get(self, name: str) -> Preset | None:
        return self._presets.get(name)

    def resolve(self, name: str | None) -> Preset:
        """Return the preset called *name*; empty names mean ``default``."""

        if not name:
            return self._presets[DEFAULT_PRESET]
        try:
            return self._presets[name]
        except KeyError:
            raise UnknownPreset(name) from None

    def render_scale(self, name: str | None) -> float:
        """Resolution multiplier handed to the upstream renderer."""

        preset = self._presets.get(name or DEFAULT_PRESET) or self._presets[DEFAULT_PRESET]
        return preset.resolution_multiplier

    def as_mapping(self) -> Mapping[str, Preset]:
        return self._presets


BUILTIN_PRESETS: Mapping[str, Mapping[str, Any]] = MappingProxyType(
    {
        "default": {"quality": None},
        "screen": {"quality": "screen", "resolution_multiplier": 1},
        "ebook": {"quality": "ebook", "resolution_multiplier": 2},
        "printer": {
            "quality": "printer",
            "resolution_multiplier": 4,
            "report_page_count": True,
            "color_strategy": "CMYK",
        },
        "prepress": {"quality": "prepress", "resolution_multiplier": 4},
    }
)


def merge_presets(
    defaults: Mapping[str, Mapping[str, Any]] = BUILTIN_PRESETS,
    static_overrides: Mapping[str, Mapping[str, Any]] | None = None,
    request_overrides: Mapping[str, Mapping[str, Any]] | None = None,
    *,
    icc_root: PathLike = DEFAULT_ICC_ROOT,
) -> PresetRegistry:
    """Build a registry from three layers, later layers winning field by field.

    Order: *defaults* < *static_overrides* < *request_overrides*.
    """

    table: dict[str, Preset] = {}
    for layer in (defaults, static_overrides or {}, request_overrides or {}):
        for name, values in layer.items():
            table[name] = build_preset(name, values, base=table.get(name), icc_root=icc_root)
    return PresetRegistry(table.values())


DEFAULT_REGISTRY = merge_presets()


__all__ = [
    "Quality",
    "Preset",
    "PresetRegistry",
    "BUILTIN_PRESETS",
    "DEFAULT_PRESET",
    "DEFAULT_REGISTRY",
    "build_preset",
    "coerce_quality",
    "merge_presets",
    "resolve_icc_profile",
]
