"""
Configuration adapter for edit pipeline settings.

Centralizes access to Django settings so the CLI and the huey task build
the same PipelineConfig. The pipeline itself never reads settings.
"""

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional, Tuple

from django.conf import settings

from clips.service.runner import FFmpegNotFound, find_ffmpeg_binary


def get_output_dir():
    """Get the directory finished clips are written to"""
    return Path(settings.CLIPSTASH_OUTPUT_DIR)


def get_tmp_dir():
    """
    Get the root for per-request tmp-<id> work directories.

    Returns:
        Path: CLIPSTASH_TMP_DIR, or the output directory when unset
    """
    tmp_dir = getattr(settings, 'CLIPSTASH_TMP_DIR', None)
    return Path(tmp_dir) if tmp_dir else get_output_dir()


def get_log_dir():
    """Get the directory per-request log files are written to"""
    log_dir = getattr(settings, 'CLIPSTASH_LOG_DIR', None)
    return Path(log_dir) if log_dir else get_output_dir() / 'logs'


def get_ffmpeg_candidates():
    return list(settings.CLIPSTASH_FFMPEG_CANDIDATES)


def get_ffmpeg_lib_dirs():
    return list(settings.CLIPSTASH_FFMPEG_LIB_DIRS)


def get_ffprobe_path():
    return settings.CLIPSTASH_FFPROBE_PATH


def get_append_edit_suffix():
    return bool(settings.CLIPSTASH_APPEND_EDIT_SUFFIX)


def get_ytdlp_proxy():
    return settings.CLIPSTASH_YTDLP_PROXY or None


def get_ytdlp_extra_args():
    return settings.CLIPSTASH_YTDLP_EXTRA_ARGS or ''


def get_default_format():
    return settings.CLIPSTASH_DEFAULT_FORMAT


def get_default_resolution():
    return settings.CLIPSTASH_DEFAULT_RESOLUTION


def get_gif_defaults():
    """
    Get the default GIF frame rate and max width.

    Returns:
        tuple[int, int]: (fps, max_width)
    """
    return settings.CLIPSTASH_GIF_FPS, settings.CLIPSTASH_GIF_MAX_WIDTH


@dataclass(frozen=True)
class PipelineConfig:
    """Everything an EditPipeline needs, resolved once at startup"""

    output_dir: Path
    tmp_root: Path
    # None when no candidate resolved; only requests with edits need it
    ffmpeg_path: Optional[str] = None
    ffmpeg_candidates: Tuple[str, ...] = ()
    ffmpeg_lib_dirs: Tuple[str, ...] = ()
    ffprobe_path: str = 'ffprobe'
    append_edit_suffix: bool = True
    ytdlp_proxy: Optional[str] = None
    ytdlp_extra_args: str = field(default='')


def load_pipeline_config(**overrides):
    """
    Build a PipelineConfig from Django settings.

    The ffmpeg binary is resolved here, once, from the ordered candidate
    list. A missing binary is not an error yet: it becomes one when a
    request that needs processing runs.

    Args:
        **overrides: PipelineConfig fields to replace (e.g. output_dir from --outdir)

    Returns:
        PipelineConfig
    """
    candidates = tuple(overrides.pop('ffmpeg_candidates', None) or get_ffmpeg_candidates())
    try:
        ffmpeg_path = find_ffmpeg_binary(candidates)
    except FFmpegNotFound:
        ffmpeg_path = None

    config = PipelineConfig(
        output_dir=get_output_dir(),
        tmp_root=get_tmp_dir(),
        ffmpeg_path=ffmpeg_path,
        ffmpeg_candidates=candidates,
        ffmpeg_lib_dirs=tuple(get_ffmpeg_lib_dirs()),
        ffprobe_path=get_ffprobe_path(),
        append_edit_suffix=get_append_edit_suffix(),
        ytdlp_proxy=get_ytdlp_proxy(),
        ytdlp_extra_args=get_ytdlp_extra_args(),
    )
    if overrides:
        # tmp-<id> directories follow an overridden output dir unless a tmp root is configured
        tmp_configured = getattr(settings, 'CLIPSTASH_TMP_DIR', None)
        if 'output_dir' in overrides and 'tmp_root' not in overrides and not tmp_configured:
            overrides['tmp_root'] = overrides['output_dir']
        for key in ('output_dir', 'tmp_root'):
            if key in overrides:
                overrides[key] = Path(overrides[key])
        config = replace(config, **overrides)
    return config
