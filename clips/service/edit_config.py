"""
Edit request value objects.

EditConfig describes what should happen to a download after it lands
(trim window, crop box, output kind, GIF knobs); DownloadOptions describes
what to fetch. Both are immutable and validated on construction.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

from clips.service.constants import (
    DEFAULT_ANIMATED_FPS,
    DEFAULT_ANIMATED_MAX_WIDTH,
)
from clips.service.geometry import CropRect


class InvalidEditConfig(ValueError):
    """Raised when an edit configuration is internally inconsistent"""

    pass


class OutputKind(Enum):
    """Output container: keep the primary container or produce an animated GIF"""

    PRIMARY = 'mp4'
    ANIMATED = 'gif'


@dataclass(frozen=True)
class EditConfig:
    """Requested edit for a single download"""

    trim_enabled: bool = False
    trim_start_ms: int = 0
    trim_end_ms: int = 0
    crop_enabled: bool = False
    crop: CropRect = field(default_factory=lambda: CropRect(0, 0, 0, 0))
    # Frame size the crop was drawn against, when known
    crop_reference: Optional[Tuple[int, int]] = None
    output_kind: OutputKind = OutputKind.PRIMARY
    animated_fps: int = DEFAULT_ANIMATED_FPS
    animated_max_width: int = DEFAULT_ANIMATED_MAX_WIDTH

    def __post_init__(self):
        if self.trim_start_ms < 0 or self.trim_end_ms < 0:
            raise InvalidEditConfig('Trim times must not be negative')
        if self.trim_enabled and self.trim_start_ms >= self.trim_end_ms:
            raise InvalidEditConfig(
                f'Trim start ({self.trim_start_ms}ms) must be before trim end ({self.trim_end_ms}ms)'
            )
        if min(self.crop.as_tuple()) < 0:
            raise InvalidEditConfig(f'Crop values must not be negative: {self.crop.as_tuple()}')
        # Dimensions are rounded down to even, so 1px would collapse to nothing
        if self.crop_enabled and (self.crop.width < 2 or self.crop.height < 2):
            raise InvalidEditConfig(
                f'Crop width and height must be at least 2 pixels: {self.crop.width}x{self.crop.height}'
            )
        if self.crop_reference is not None and min(self.crop_reference) < 0:
            raise InvalidEditConfig(f'Crop reference size must not be negative: {self.crop_reference}')
        if self.animated_fps <= 0:
            raise InvalidEditConfig(f'GIF frame rate must be positive: {self.animated_fps}')
        if self.animated_max_width <= 0 or self.animated_max_width % 2:
            raise InvalidEditConfig(
                f'GIF max width must be a positive even number: {self.animated_max_width}'
            )

    @property
    def is_animated(self):
        return self.output_kind == OutputKind.ANIMATED

    @property
    def has_edits(self):
        """True when the download needs a processing pass"""
        return self.trim_enabled or self.crop_enabled or self.is_animated

    @property
    def trim_duration_ms(self):
        if not self.trim_enabled:
            return 0
        return self.trim_end_ms - self.trim_start_ms


@dataclass(frozen=True)
class DownloadOptions:
    """What to fetch and how to name it"""

    source_url: str
    format_selector: str = 'bestvideo+bestaudio/best'
    resolution_hint: str = 'best'
    custom_base_name: Optional[str] = None


def estimate_animated_size(config, duration_ms=None):
    """
    Rough size of the GIF a config would produce.

    Args:
        config: EditConfig
        duration_ms: Length of the source in ms; the trim window wins when trimming

    Returns:
        int: Estimated size in bytes (never below 100 kB)
    """
    if config.trim_enabled:
        duration_ms = config.trim_duration_ms
    duration_ms = max(duration_ms or 0, 1000)
    frames = (duration_ms / 1000) * config.animated_fps
    estimated = frames * config.animated_max_width * 0.6 * 1000
    return max(int(estimated), 100000)
