"""
ffmpeg argument synthesis.

Turns an EditConfig into the argument list for a single ffmpeg invocation.
Nothing here touches the filesystem; the same inputs always give the same
arguments.
"""

from typing import List

from clips.service.constants import (
    MIN_TRIM_MS,
    PALETTE_MAX_COLORS,
    VIDEO_REENCODE_ARGS,
)
from clips.service.geometry import CropRect, even


def format_seconds(ms):
    """Milliseconds to the seconds string ffmpeg expects (3 decimals)."""
    return f'{ms / 1000:.3f}'


def sanitized_crop(config):
    """
    Crop to apply, with dimensions rounded down to even.

    Returns:
        CropRect, or None if cropping is off or the crop collapses to nothing
    """
    if not config.crop_enabled:
        return None
    crop = config.crop
    width = even(crop.width)
    height = even(crop.height)
    if width <= 0 or height <= 0:
        return None
    return CropRect(crop.x, crop.y, width, height)


def crop_filter(crop):
    return f'crop={crop.width}:{crop.height}:{crop.x}:{crop.y}'


def animated_filter_graph(config, crop=None):
    """
    Build the GIF filter graph.

    The decoded stream is split in two: one branch generates a palette, the
    other is mapped through it. The graph output is labelled [out].
    """
    stages = []
    if crop is not None:
        stages.append(crop_filter(crop))
    stages.append(f'fps={config.animated_fps}')
    stages.append(f'scale={config.animated_max_width}:-2:flags=lanczos')
    stages.append('split[s0][s1]')
    return (
        '[0:v]' + ','.join(stages) + ';'
        f'[s0]palettegen=max_colors={PALETTE_MAX_COLORS}[p];'
        '[s1][p]paletteuse=dither=bayer[out]'
    )


def describe_mode(config):
    """
    Name the processing path a config selects.

    Returns:
        str: 'animated', 'reencode' or 'copy'
    """
    if config.is_animated:
        return 'animated'
    if sanitized_crop(config) is not None:
        return 'reencode'
    return 'copy'


def build_filter_command(input_path, output_path, config) -> List[str]:
    """
    Build ffmpeg arguments for an edit.

    Trimming seeks on the input side (-ss/-t before -i) and uses a duration
    rather than an end time. The processing path is one of:
    - stream copy when there is no crop and no GIF output
    - a palette filter graph for GIF output (crop optional)
    - a crop filter with an h264 re-encode, audio copied

    Args:
        input_path: Downloaded file
        output_path: Final file (already claimed by the caller)
        config: EditConfig

    Returns:
        list: Arguments, excluding the ffmpeg binary itself
    """
    args = ['-y']

    trim_duration = config.trim_end_ms - config.trim_start_ms
    if config.trim_enabled and trim_duration > MIN_TRIM_MS:
        args.extend([
            '-ss', format_seconds(config.trim_start_ms),
            '-t', format_seconds(trim_duration),
        ])

    args.extend(['-i', str(input_path)])

    crop = sanitized_crop(config)
    mode = describe_mode(config)

    if mode == 'animated':
        args.extend([
            '-filter_complex', animated_filter_graph(config, crop),
            '-map', '[out]',
            '-loop', '0',
        ])
    elif mode == 'reencode':
        args.extend(['-vf', crop_filter(crop)])
        args.extend(VIDEO_REENCODE_ARGS)
    else:
        args.extend(['-c', 'copy', '-avoid_negative_ts', 'make_zero'])

    args.append(str(output_path))
    return args
