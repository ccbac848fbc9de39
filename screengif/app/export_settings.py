"""GIF export presets and per-field overrides.

Four presets cover the usual size/quality trade-offs.  Any field can be
overridden individually; an explicit override always wins over the
preset's value for that field.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class DitheringMode(str, Enum):
    """Dithering algorithm; the value is ffmpeg's ``paletteuse`` token."""

    NONE = "none"
    BAYER = "bayer"
    SIERRA2 = "sierra2"
    SIERRA2_4A = "sierra2_4a"
    FLOYD_STEINBERG = "floyd_steinberg"

    @property
    def display_name(self) -> str:
        return _DITHER_NAMES[self]


_DITHER_NAMES = {
    DitheringMode.NONE: "None (sharp edges)",
    DitheringMode.BAYER: "Bayer (ordered)",
    DitheringMode.SIERRA2: "Sierra-2",
    DitheringMode.SIERRA2_4A: "Sierra-2-4A (fast)",
    DitheringMode.FLOYD_STEINBERG: "Floyd-Steinberg (smooth)",
}


@dataclass(frozen=True)
class PresetValues:
    fps: int
    max_width: int
    max_colors: int
    dithering: DitheringMode


class ExportPreset(str, Enum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"
    ORIGINAL = "original"

    @property
    def values(self) -> PresetValues:
        return PRESET_VALUES[self]

    @property
    def display_name(self) -> str:
        return {
            "small": "Small (Fast upload)",
            "medium": "Medium (Balanced)",
            "large": "Large (High quality)",
            "original": "Original (Maximum quality)",
        }[self.value]


PRESET_VALUES = {
    ExportPreset.SMALL: PresetValues(10, 480, 128, DitheringMode.BAYER),
    ExportPreset.MEDIUM: PresetValues(15, 640, 256, DitheringMode.SIERRA2),
    ExportPreset.LARGE: PresetValues(20, 1280, 256, DitheringMode.FLOYD_STEINBERG),
    # 9999 = effectively no width limit
    ExportPreset.ORIGINAL: PresetValues(30, 9999, 256, DitheringMode.FLOYD_STEINBERG),
}


@dataclass
class ExportSettings:
    """Effective export settings: a preset plus optional overrides."""

    preset: ExportPreset = ExportPreset.MEDIUM
    custom_fps: Optional[int] = None
    custom_max_width: Optional[int] = None
    custom_max_colors: Optional[int] = None
    custom_dithering: Optional[DitheringMode] = None
    loop_count: int = 0  # 0 = loop forever

    @property
    def fps(self) -> int:
        return self.custom_fps if self.custom_fps is not None else self.preset.values.fps

    @property
    def max_width(self) -> int:
        if self.custom_max_width is not None:
            return self.custom_max_width
        return self.preset.values.max_width

    @property
    def max_colors(self) -> int:
        if self.custom_max_colors is not None:
            return self.custom_max_colors
        return self.preset.values.max_colors

    @property
    def dithering(self) -> DitheringMode:
        if self.custom_dithering is not None:
            return self.custom_dithering
        return self.preset.values.dithering

    def to_dict(self) -> dict:
        d: dict = {"preset": self.preset.value, "loopCount": self.loop_count}
        if self.custom_fps is not None:
            d["customFps"] = self.custom_fps
        if self.custom_max_width is not None:
            d["customMaxWidth"] = self.custom_max_width
        if self.custom_max_colors is not None:
            d["customMaxColors"] = self.custom_max_colors
        if self.custom_dithering is not None:
            d["customDithering"] = self.custom_dithering.value
        return d

    @staticmethod
    def from_dict(d: dict) -> "ExportSettings":
        dither = d.get("customDithering")
        return ExportSettings(
            preset=ExportPreset(d.get("preset", ExportPreset.MEDIUM.value)),
            custom_fps=d.get("customFps"),
            custom_max_width=d.get("customMaxWidth"),
            custom_max_colors=d.get("customMaxColors"),
            custom_dithering=DitheringMode(dither) if dither is not None else None,
            loop_count=d.get("loopCount", 0),
        )
