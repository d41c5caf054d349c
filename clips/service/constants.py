"""
Media format and edit constants.

Centralized definitions of file extensions, progress windows and ffmpeg
encoding defaults.
"""

# Downloaded content yt-dlp can leave behind as the main file
MEDIA_EXTENSIONS = [
    '.mp4',
    '.mkv',
    '.webm',
    '.mov',
    '.m4a',
    '.mp3',
    '.ogg',
    '.opus',
]

# yt-dlp working files that are never the finished download
PARTIAL_SUFFIXES = ['.part', '.ytdl']

DEFAULT_VIDEO_EXTENSION = '.mp4'
ANIMATED_EXTENSION = '.gif'

# Progress windows (percent) for the two pipeline phases
DOWNLOAD_WINDOW_WITH_EDITS = 80
PROCESSING_WINDOW_START = 80
PROCESSING_WINDOW_SPAN = 20

# Runner progress never reports 100 before the process has exited cleanly
RUNNER_MAX_PROGRESS = 99

# Trims at or below this length are ignored
MIN_TRIM_MS = 100

# Animated output defaults
DEFAULT_ANIMATED_FPS = 15
DEFAULT_ANIMATED_MAX_WIDTH = 480
PALETTE_MAX_COLORS = 128

# Re-encode settings for cropped primary output (audio is passed through)
VIDEO_REENCODE_ARGS = ['-c:v', 'libx264', '-preset', 'fast', '-crf', '23', '-c:a', 'copy']

# Interactive crop defaults (display units)
MIN_CROP_SIZE = 80.0
CROP_PADDING_RATIO = 0.1
TOUCH_SLOP = 40.0

# Descriptive filename suffixes per active edit
TRIM_SUFFIX = '_trimmed'
CROP_SUFFIX = '_cropped'
ANIMATED_SUFFIX = '_gif'

# Phase labels reported with progress
PHASE_QUEUED = 'Queued'
PHASE_DOWNLOADING = 'Downloading'
PHASE_PROCESSING = 'Processing'
PHASE_COMPLETE = 'Complete'
PHASE_FAILED = 'Failed'
PHASE_CANCELLED = 'Cancelled'
