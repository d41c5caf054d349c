"""
Extraction client backed by yt-dlp.

Fetches metadata and downloads a single item into a directory the caller
owns, reporting progress as (percent, message) and honouring a cancel
event between progress callbacks.
"""

import re
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import yt_dlp
from yt_dlp.utils import DownloadCancelled, parse_bytes

from clips.service.constants import MEDIA_EXTENSIONS, PARTIAL_SUFFIXES
from clips.utils import sanitize_filename

# yt-dlp per-format intermediates such as "title.f137.mp4"
INTERMEDIATE_PATTERN = re.compile(r'.*\.f\d+\.[a-zA-Z0-9]+$')

# Prefer h265/h264 in mp4 so the result plays everywhere; vp9/av1 still win if nothing else exists
VIDEO_FORMAT_SORT = ['vcodec:h265', 'vcodec:h264', 'ext:mp4:m4a']

# Extra-args flags that take a value, mapped to their YoutubeDL option
VALUE_ARGS = {
    '--format': 'format',
    '-f': 'format',
    '--merge-output-format': 'merge_output_format',
    '--proxy': 'proxy',
    '--cookies': 'cookiefile',
    '--limit-rate': 'ratelimit',
    '-r': 'ratelimit',
    '--sleep-interval': 'sleep_interval',
    '--max-sleep-interval': 'max_sleep_interval',
}
OPTION_CONVERTERS = {
    'sleep_interval': int,
    'max_sleep_interval': int,
    'ratelimit': parse_bytes,
}


class ExtractionError(Exception):
    """Raised when yt-dlp cannot extract or download a URL"""

    pass


@dataclass
class VideoMetadata:
    """Metadata returned by fetch_metadata()"""

    title: str
    source_url: str
    uploader: str = ''
    duration_seconds: int = 0
    thumbnail_url: str = ''
    direct_stream_url: Optional[str] = None
    available_resolutions: List[int] = field(default_factory=list)
    platform: str = 'Unknown'
    width: Optional[int] = None
    height: Optional[int] = None


def build_format_selector(format_selector, resolution):
    """
    Turn a requested format and resolution into a yt-dlp format string.

    Args:
        format_selector: Requested format, e.g. 'bestvideo+bestaudio/best' or 'bestaudio'
        resolution: 'best' or a maximum height such as '720'

    Returns:
        str: yt-dlp format selector
    """
    is_audio_only = 'bestaudio' in format_selector and 'bestvideo' not in format_selector
    is_video_only = 'bestaudio' not in format_selector

    if is_audio_only:
        return 'bestaudio[ext=m4a]/bestaudio/best'
    if is_video_only:
        if resolution == 'best':
            return 'bestvideo/best'
        return f'bestvideo[height<={resolution}]/best[height<={resolution}]'
    # m4a audio keeps the mp4 merge compatible; no ext filter on video so webm-only sites still work
    if resolution == 'best':
        return 'bestvideo+bestaudio[ext=m4a]/bestvideo+bestaudio/best'
    return (
        f'bestvideo[height<={resolution}]+bestaudio[ext=m4a]/'
        f'bestvideo[height<={resolution}]+bestaudio/'
        f'best[height<={resolution}]/best'
    )


def parse_ytdlp_extra_args(args_string, base_opts):
    """
    Apply a yt-dlp command-line style argument string to an options dict.

    Only the flags in VALUE_ARGS plus --embed-metadata are understood;
    anything else is skipped.

    Args:
        args_string: e.g. '--format "bv*[height<=720]" --proxy socks5://host:1080'
        base_opts: yt-dlp options dict to update

    Returns:
        dict: Updated yt-dlp options dict
    """
    if not args_string:
        return base_opts

    args_list = shlex.split(args_string)
    i = 0
    while i < len(args_list):
        arg = args_list[i]
        if arg in VALUE_ARGS:
            if i + 1 < len(args_list):
                option = VALUE_ARGS[arg]
                convert = OPTION_CONVERTERS.get(option)
                value = args_list[i + 1]
                base_opts[option] = convert(value) if convert else value
                i += 2
            else:
                i += 1
        elif arg == '--embed-metadata':
            base_opts['postprocessors'] = base_opts.get('postprocessors', []) + [
                {'key': 'FFmpegMetadata', 'add_metadata': True}
            ]
            i += 1
        else:
            i += 1

    return base_opts


def find_downloaded_file(directory):
    """
    Pick the finished media file yt-dlp left in a directory.

    Partial downloads and per-format intermediates are ignored; among the
    rest, known media extensions are preferred and the largest file wins.

    Returns:
        Path or None
    """
    directory = Path(directory)
    candidates = [
        f
        for f in directory.iterdir()
        if f.is_file()
        and f.suffix not in PARTIAL_SUFFIXES
        and not INTERMEDIATE_PATTERN.match(f.name)
    ]
    media_files = [f for f in candidates if f.suffix.lower() in MEDIA_EXTENSIONS]
    pool = media_files or candidates
    if not pool:
        return None
    return max(pool, key=lambda f: f.stat().st_size)


class YtDlpClient:
    """Extraction client used by the edit pipeline"""

    def __init__(self, proxy=None, extra_args='', logger=None):
        self.proxy = proxy
        self.extra_args = extra_args
        self.logger = logger

    def log(self, message):
        if self.logger:
            self.logger(message)

    def _base_opts(self):
        opts = {
            'quiet': True,
            'no_warnings': True,
            'noplaylist': True,
            'socket_timeout': 30,
            'retries': 3,
        }
        # Needed on cloud VMs where some sites block datacenter addresses
        if self.proxy:
            opts['proxy'] = self.proxy
        return opts

    def fetch_metadata(self, url):
        """
        Fetch metadata without downloading.

        Args:
            url: Source URL

        Returns:
            VideoMetadata

        Raises:
            ExtractionError: If extraction fails or the URL is a playlist
        """
        self.log(f'Fetching metadata: {url}')
        try:
            with yt_dlp.YoutubeDL(self._base_opts()) as ydl:
                info = ydl.extract_info(url, download=False)
        except yt_dlp.utils.DownloadError as e:
            raise ExtractionError(str(e)) from e

        if not info:
            raise ExtractionError(f'No information returned for {url}')
        if info.get('_type') == 'playlist' or 'entries' in info:
            raise ExtractionError('Playlists are not supported')

        resolutions = sorted(
            {f.get('height') for f in info.get('formats') or [] if f.get('height')},
            reverse=True,
        )
        metadata = VideoMetadata(
            title=info.get('title') or 'Unknown Title',
            source_url=url,
            uploader=info.get('uploader') or info.get('channel') or '',
            duration_seconds=int(info.get('duration') or 0),
            thumbnail_url=info.get('thumbnail') or '',
            direct_stream_url=info.get('url'),
            available_resolutions=resolutions,
            platform=info.get('extractor_key') or info.get('extractor') or 'Unknown',
            width=info.get('width'),
            height=info.get('height'),
        )
        self.log(f'Title: {metadata.title} ({metadata.platform})')
        return metadata

    def build_download_opts(self, format_selector, resolution, destination_dir, base_name=None):
        """
        yt-dlp options for a single download.

        Returns:
            dict: Options for yt_dlp.YoutubeDL
        """
        destination_dir = Path(destination_dir)
        name = sanitize_filename(base_name) if base_name else ''
        template = f'{name}.%(ext)s' if name else '%(title)s.%(ext)s'

        opts = self._base_opts()
        opts.update({
            'format': build_format_selector(format_selector, resolution),
            'outtmpl': str(destination_dir / template),
            'windowsfilenames': True,
        })

        is_audio_only = 'bestaudio' in format_selector and 'bestvideo' not in format_selector
        if not is_audio_only:
            opts['format_sort'] = list(VIDEO_FORMAT_SORT)
            opts['merge_output_format'] = 'mp4'

        return parse_ytdlp_extra_args(self.extra_args, opts)

    def download(
        self,
        url,
        format_selector,
        resolution,
        destination_dir,
        base_name=None,
        on_progress=None,
        cancel_event=None,
    ):
        """
        Download a single item.

        Args:
            url: Source URL
            format_selector: Requested format (see build_format_selector)
            resolution: 'best' or a maximum height
            destination_dir: Directory to download into (created if missing)
            base_name: Optional output name without extension
            on_progress: Optional callable(int, str) with 0-100 progress
            cancel_event: Optional threading.Event; setting it aborts the download

        Returns:
            Path: The downloaded media file

        Raises:
            ExtractionError: If yt-dlp fails, is cancelled, or leaves no media file
        """
        destination_dir = Path(destination_dir)
        destination_dir.mkdir(parents=True, exist_ok=True)

        def progress_hook(d):
            if cancel_event is not None and cancel_event.is_set():
                raise DownloadCancelled('Download cancelled')
            if not on_progress:
                return
            if d['status'] == 'downloading':
                total = d.get('total_bytes') or d.get('total_bytes_estimate')
                downloaded = d.get('downloaded_bytes')
                if total and downloaded is not None:
                    percent = max(0, min(int(downloaded / total * 100), 100))
                    on_progress(percent, f'Downloading {percent}%')
            elif d['status'] == 'finished':
                on_progress(100, 'Download finished')

        ydl_opts = self.build_download_opts(format_selector, resolution, destination_dir, base_name)
        ydl_opts['progress_hooks'] = [progress_hook]

        self.log(f'Downloading with yt-dlp: {url}')
        self.log(f'Format: {ydl_opts.get("format")}')

        try:
            with yt_dlp.YoutubeDL(ydl_opts) as ydl:
                ydl.download([url])
        except DownloadCancelled as e:
            raise ExtractionError('Download cancelled') from e
        except yt_dlp.utils.DownloadError as e:
            raise ExtractionError(str(e)) from e

        downloaded = find_downloaded_file(destination_dir)
        if downloaded is None:
            raise ExtractionError('Download completed but file not found')

        self.log(f'Downloaded file: {downloaded.name} ({downloaded.stat().st_size} bytes)')
        return downloaded
