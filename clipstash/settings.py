"""
Django settings for the clipstash project.

clipstash has no web front end: Django supplies settings, management
commands and the test runner, huey runs edit requests in the background.
Every CLIPSTASH_* value can be overridden from the environment.
"""

import os
from pathlib import Path


def _env_bool(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_list(name, default):
    value = os.environ.get(name)
    if not value:
        return list(default)
    return [part for part in value.split(os.pathsep) if part]


BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'clipstash-dev-only-secret-key')

DEBUG = _env_bool('DJANGO_DEBUG', True)

ALLOWED_HOSTS = []

INSTALLED_APPS = [
    'huey.contrib.djhuey',
    'clips',
]

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': BASE_DIR / 'db.sqlite3',
    }
}

USE_TZ = True
TIME_ZONE = 'UTC'

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

HUEY = {
    'huey_class': 'huey.SqliteHuey',
    'name': 'clipstash',
    'filename': str(BASE_DIR / 'huey.sqlite3'),
    'immediate': _env_bool('CLIPSTASH_HUEY_IMMEDIATE', False),
    'consumer': {
        'workers': int(os.environ.get('CLIPSTASH_HUEY_WORKERS', '2')),
        'worker_type': 'thread',
    },
}

# Where finished clips land
CLIPSTASH_OUTPUT_DIR = Path(os.environ.get('CLIPSTASH_OUTPUT_DIR', BASE_DIR / 'clips_output'))

# Root for per-request tmp-<id> work directories (defaults to the output dir)
CLIPSTASH_TMP_DIR = os.environ.get('CLIPSTASH_TMP_DIR') or None

# Per-request log files written by the huey task
CLIPSTASH_LOG_DIR = os.environ.get('CLIPSTASH_LOG_DIR') or None

# Ordered list of ffmpeg locations, first existing executable wins
CLIPSTASH_FFMPEG_CANDIDATES = _env_list(
    'CLIPSTASH_FFMPEG_CANDIDATES',
    ['ffmpeg', '/usr/local/bin/ffmpeg', '/usr/bin/ffmpeg'],
)

# Extra shared-library directories ffmpeg needs on LD_LIBRARY_PATH
CLIPSTASH_FFMPEG_LIB_DIRS = _env_list('CLIPSTASH_FFMPEG_LIB_DIRS', [])

CLIPSTASH_FFPROBE_PATH = os.environ.get('CLIPSTASH_FFPROBE_PATH', 'ffprobe')

# Append _trimmed/_cropped/_gif to output names
CLIPSTASH_APPEND_EDIT_SUFFIX = _env_bool('CLIPSTASH_APPEND_EDIT_SUFFIX', True)

# Needed on cloud VMs where some sites block datacenter addresses
CLIPSTASH_YTDLP_PROXY = os.environ.get('CLIPSTASH_YTDLP_PROXY', '')

CLIPSTASH_YTDLP_EXTRA_ARGS = os.environ.get('CLIPSTASH_YTDLP_EXTRA_ARGS', '')

CLIPSTASH_DEFAULT_FORMAT = 'bestvideo+bestaudio/best'
CLIPSTASH_DEFAULT_RESOLUTION = 'best'

CLIPSTASH_GIF_FPS = 15
CLIPSTASH_GIF_MAX_WIDTH = 480
