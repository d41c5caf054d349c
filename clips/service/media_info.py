"""
Media inspection helpers.

Wraps ffprobe to read the decoded size, rotation and duration of a
downloaded file, plus small formatting helpers for durations and sizes.
"""

import json
import subprocess
from dataclasses import dataclass
from pathlib import Path

from clips.service.geometry import oriented_size


class ProbeError(Exception):
    """Raised when ffprobe cannot inspect a file"""

    pass


@dataclass(frozen=True)
class ProbeResult:
    """What ffprobe reports about the first video stream"""

    duration_ms: int
    width: int
    height: int
    rotation_degrees: int = 0

    @property
    def oriented_size(self):
        """(width, height) as displayed, after rotation"""
        return oriented_size((self.width, self.height), self.rotation_degrees)


def _stream_rotation(stream):
    """
    Rotation of a stream in [0, 360).

    Older muxers store a 'rotate' tag, newer ones a display matrix side data
    entry (whose rotation is counter-clockwise, so it is negated).
    """
    tags = stream.get('tags') or {}
    rotate = tags.get('rotate')
    if rotate is not None:
        try:
            return int(float(rotate)) % 360
        except (TypeError, ValueError):
            pass

    for side_data in stream.get('side_data_list') or []:
        rotation = side_data.get('rotation')
        if rotation is not None:
            try:
                return -int(float(rotation)) % 360
            except (TypeError, ValueError):
                continue
    return 0


def parse_probe_output(output):
    """
    Parse ffprobe JSON output into a ProbeResult.

    Args:
        output: ffprobe stdout (-print_format json -show_format -show_streams)

    Returns:
        ProbeResult

    Raises:
        ProbeError: If the output is not JSON or has no video stream
    """
    try:
        metadata = json.loads(output)
    except json.JSONDecodeError as e:
        raise ProbeError(f'Unreadable ffprobe output: {e}') from e

    video_streams = [
        stream for stream in metadata.get('streams', []) if stream.get('codec_type') == 'video'
    ]
    if not video_streams:
        raise ProbeError('No video stream found')
    stream = video_streams[0]

    duration_raw = metadata.get('format', {}).get('duration') or stream.get('duration')
    try:
        duration_ms = int(float(duration_raw) * 1000) if duration_raw is not None else 0
    except (TypeError, ValueError):
        duration_ms = 0

    return ProbeResult(
        duration_ms=duration_ms,
        width=int(stream.get('width') or 0),
        height=int(stream.get('height') or 0),
        rotation_degrees=_stream_rotation(stream),
    )


def probe_media(path, ffprobe_path='ffprobe'):
    """
    Inspect a downloaded file with ffprobe.

    Args:
        path: Media file
        ffprobe_path: ffprobe executable

    Returns:
        ProbeResult

    Raises:
        ProbeError: If ffprobe is missing, fails, or the file has no video
    """
    path = Path(path)
    try:
        result = subprocess.run(
            [
                ffprobe_path,
                '-v',
                'quiet',
                '-print_format',
                'json',
                '-show_format',
                '-show_streams',
                str(path),
            ],
            capture_output=True,
            text=True,
            check=True,
            timeout=30,
        )
    except FileNotFoundError as e:
        raise ProbeError(f'ffprobe not found: {ffprobe_path}') from e
    except subprocess.CalledProcessError as e:
        raise ProbeError(f'ffprobe failed on {path.name} (exit {e.returncode})') from e
    except subprocess.TimeoutExpired as e:
        raise ProbeError(f'ffprobe timed out on {path.name}') from e

    return parse_probe_output(result.stdout)


def format_duration(ms):
    """Format milliseconds as M:SS, or H:MM:SS past an hour."""
    total_seconds = max(int(ms), 0) // 1000
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    if hours > 0:
        return f'{hours}:{minutes:02d}:{seconds:02d}'
    return f'{minutes}:{seconds:02d}'


def format_file_size(size):
    """Format a byte count for display (B, KB, MB, GB)."""
    if size < 1024:
        return f'{size} B'
    if size < 1024 * 1024:
        return f'{size / 1024:.1f} KB'
    if size < 1024 * 1024 * 1024:
        return f'{size / (1024 * 1024):.1f} MB'
    return f'{size / (1024 * 1024 * 1024):.2f} GB'
