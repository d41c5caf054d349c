"""
Edit pipeline.

Runs one request from URL to finished file: download into a private
tmp-<id> directory, fit the crop to the real decoded frame, run ffmpeg when
edits were requested, claim a collision-free output name, and clean up on
every exit path. Progress is reported on a single 0-100 scale.
"""

import shutil
import threading
from dataclasses import dataclass, replace
from functools import partial
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from clips.service.constants import (
    ANIMATED_EXTENSION,
    ANIMATED_SUFFIX,
    CROP_SUFFIX,
    DEFAULT_VIDEO_EXTENSION,
    DOWNLOAD_WINDOW_WITH_EDITS,
    MIN_TRIM_MS,
    PHASE_CANCELLED,
    PHASE_COMPLETE,
    PHASE_DOWNLOADING,
    PHASE_FAILED,
    PHASE_PROCESSING,
    PHASE_QUEUED,
    PROCESSING_WINDOW_SPAN,
    PROCESSING_WINDOW_START,
    TRIM_SUFFIX,
)
from clips.service.download import YtDlpClient
from clips.service.filters import build_filter_command, describe_mode
from clips.service.geometry import rescale_to_actual
from clips.service.media_info import probe_media
from clips.service.runner import FFmpegNotFound, run_ffmpeg
from clips.utils import claim_output_path, generate_request_id, sanitize_filename


class InvalidRequest(ValueError):
    """Raised before any I/O when a request is missing or malformed"""

    pass


class PipelineError(Exception):
    """A request failed; the message is the reason reported to the caller"""

    pass


class ProcessingFailed(PipelineError):
    """ffmpeg exited with a non-zero status"""

    def __init__(self, exit_code):
        self.exit_code = exit_code
        super().__init__(f'Processing failed (exit {exit_code})')


class PipelineCancelled(PipelineError):
    pass


@dataclass(frozen=True)
class PipelineProgress:
    percent: int
    phase: str


@dataclass(frozen=True)
class PipelineResult:
    """Terminal outcome of a pipeline run"""

    success: bool
    path: Optional[Path] = None
    reason: Optional[str] = None
    cancelled: bool = False

    @classmethod
    def succeeded(cls, path):
        return cls(success=True, path=Path(path))

    @classmethod
    def failed(cls, reason, cancelled=False):
        return cls(success=False, reason=reason, cancelled=cancelled)


class ProgressWindow:
    """
    Maps raw 0-100 progress into [start, start + span].

    Reports never go backwards: a raw value that maps below the highest
    value already returned is reported as that highest value.
    """

    def __init__(self, start, span):
        self.start = start
        self.span = span
        self.highest = None

    def map(self, raw):
        raw = max(0, min(int(raw), 100))
        value = self.start + raw * self.span // 100
        if self.highest is not None and value < self.highest:
            value = self.highest
        self.highest = value
        return value


def validate_request(url, options, edit_config):
    """
    Reject malformed requests before anything touches the network.

    Raises:
        InvalidRequest: If the URL is missing or not http(s), or options are incomplete
    """
    if not url or not url.strip():
        raise InvalidRequest('URL is required')
    parsed = urlparse(url.strip())
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        raise InvalidRequest(f'Not an http(s) URL: {url}')
    if options is None:
        raise InvalidRequest('Download options are required')
    if edit_config is None:
        raise InvalidRequest('Edit configuration is required')
    if not options.format_selector:
        raise InvalidRequest('Format selector is required')
    if not options.resolution_hint:
        raise InvalidRequest('Resolution hint is required')


def edit_suffix(edit_config):
    """Descriptive file name suffix for the active edits, e.g. '_trimmed_gif'"""
    suffix = ''
    if edit_config.trim_enabled:
        suffix += TRIM_SUFFIX
    if edit_config.crop_enabled:
        suffix += CROP_SUFFIX
    if edit_config.is_animated:
        suffix += ANIMATED_SUFFIX
    return suffix


class EditPipeline:
    """
    Runs a single edit request.

    One instance per request: the instance owns the request id (and so the
    tmp-<id> directory), the cancel event and the running ffmpeg process.
    """

    def __init__(self, config, client=None, prober=None, runner=run_ffmpeg, request_id=None, logger=None):
        """
        Args:
            config: PipelineConfig
            client: Extraction client (defaults to YtDlpClient from config)
            prober: callable(path) -> ProbeResult (defaults to ffprobe)
            runner: callable with the run_ffmpeg signature
            request_id: Id used for the work directory (generated if omitted)
            logger: Optional callable(str) for logging
        """
        self.config = config
        self.client = client or YtDlpClient(
            proxy=config.ytdlp_proxy, extra_args=config.ytdlp_extra_args, logger=logger
        )
        self.prober = prober or partial(probe_media, ffprobe_path=config.ffprobe_path)
        self.runner = runner
        self.request_id = request_id or generate_request_id()
        self.logger = logger
        self.progress = PipelineProgress(0, PHASE_QUEUED)
        self._cancel_event = threading.Event()
        self._process = None
        self._process_lock = threading.Lock()

    def log(self, message):
        if self.logger:
            self.logger(message)

    @property
    def work_dir(self):
        return Path(self.config.tmp_root) / f'tmp-{self.request_id}'

    @property
    def cancelled(self):
        return self._cancel_event.is_set()

    def cancel(self):
        """
        Cancel the request.

        Stops the download at its next progress callback and terminates a
        running ffmpeg process. The run then fails with cancelled=True.
        """
        self._cancel_event.set()
        with self._process_lock:
            process = self._process
        if process is not None and process.poll() is None:
            self.log('Cancel requested, terminating ffmpeg')
            process.terminate()

    def _hold_process(self, process):
        with self._process_lock:
            self._process = process
        if self._cancel_event.is_set():
            process.terminate()

    def _release_process(self):
        with self._process_lock:
            self._process = None

    def _raise_if_cancelled(self):
        if self._cancel_event.is_set():
            raise PipelineCancelled('Cancelled')

    def run(self, url, options, edit_config, on_progress=None):
        """
        Download and (if needed) edit one item.

        Args:
            url: Source URL (http or https)
            options: DownloadOptions
            edit_config: EditConfig
            on_progress: Optional callable(PipelineProgress), called from worker threads

        Returns:
            PipelineResult; failures are returned, not raised

        Raises:
            InvalidRequest: If the request is malformed (nothing is downloaded)
        """
        validate_request(url, options, edit_config)

        def report(percent, phase):
            self.progress = PipelineProgress(percent, phase)
            if on_progress:
                on_progress(self.progress)

        work_dir = self.work_dir
        output_path = None
        succeeded = False
        self.log(f'Request {self.request_id}: {url}')

        try:
            work_dir.mkdir(parents=True, exist_ok=True)
            downloaded = self._download(url, options, edit_config, work_dir, report)
            self._raise_if_cancelled()

            if edit_config.has_edits:
                processing_window = ProgressWindow(PROCESSING_WINDOW_START, PROCESSING_WINDOW_SPAN)
                report(processing_window.map(0), PHASE_PROCESSING)
                edit_config = self._fit_crop(downloaded, edit_config)
                ffmpeg_path = self._require_ffmpeg()

            output_path = claim_output_path(
                self.config.output_dir,
                self._base_name(options, downloaded),
                edit_suffix(edit_config) if self.config.append_edit_suffix else '',
                self._output_extension(downloaded, edit_config),
            )

            if edit_config.has_edits:
                self._process_media(
                    ffmpeg_path, downloaded, output_path, edit_config, processing_window, report
                )
            else:
                # No edits: the download itself is the result
                shutil.move(str(downloaded), str(output_path))

            self._verify_output(output_path)
            report(100, PHASE_COMPLETE)
            self.log(f'Saved: {output_path}')
            succeeded = True
            return PipelineResult.succeeded(output_path)

        except Exception as e:
            cancelled = self._cancel_event.is_set()
            reason = 'Cancelled' if cancelled else (str(e) or e.__class__.__name__)
            self.log(f'Request {self.request_id} failed: {reason}')
            report(self.progress.percent, PHASE_CANCELLED if cancelled else PHASE_FAILED)
            return PipelineResult.failed(reason, cancelled=cancelled)

        finally:
            # Also covers KeyboardInterrupt, which skips the except branch
            if not succeeded and output_path is not None:
                output_path.unlink(missing_ok=True)
            self._release_process()
            shutil.rmtree(work_dir, ignore_errors=True)

    def _download(self, url, options, edit_config, work_dir, report):
        span = DOWNLOAD_WINDOW_WITH_EDITS if edit_config.has_edits else 100
        window = ProgressWindow(0, span)

        def on_download_progress(percent, message):
            report(window.map(percent), PHASE_DOWNLOADING)

        downloaded = self.client.download(
            url,
            options.format_selector,
            options.resolution_hint,
            work_dir,
            base_name=options.custom_base_name,
            on_progress=on_download_progress,
            cancel_event=self._cancel_event,
        )
        self._raise_if_cancelled()

        downloaded = Path(downloaded)
        if not downloaded.is_file():
            raise PipelineError('Downloaded file is missing')
        if downloaded.stat().st_size == 0:
            raise PipelineError('Downloaded file is empty')
        self.log(f'Downloaded {downloaded.name} ({downloaded.stat().st_size} bytes)')
        return downloaded

    def _fit_crop(self, downloaded, edit_config):
        """
        Rescale the crop onto the decoded frame of the download.

        The extractor may deliver a different resolution than it advertised,
        so the crop is checked against what ffprobe reports for the actual
        file, once.
        """
        if not edit_config.crop_enabled or not edit_config.crop_reference:
            return edit_config

        probe = self.prober(downloaded)
        actual = probe.oriented_size
        reference = tuple(edit_config.crop_reference)
        if actual[0] <= 0 or actual[1] <= 0 or actual == reference:
            return edit_config

        crop = rescale_to_actual(
            edit_config.crop, reference, (probe.width, probe.height), probe.rotation_degrees
        )
        self.log(
            f'Rescaled crop {edit_config.crop.as_tuple()} from {reference[0]}x{reference[1]} '
            f'to {crop.as_tuple()} for {actual[0]}x{actual[1]}'
        )
        return replace(edit_config, crop=crop, crop_reference=actual)

    def _require_ffmpeg(self):
        if not self.config.ffmpeg_path:
            raise FFmpegNotFound(self.config.ffmpeg_candidates)
        return self.config.ffmpeg_path

    def _base_name(self, options, downloaded):
        if options.custom_base_name:
            name = sanitize_filename(options.custom_base_name)
            if name:
                return name
        return downloaded.stem

    def _output_extension(self, downloaded, edit_config):
        if edit_config.is_animated:
            return ANIMATED_EXTENSION
        return downloaded.suffix or DEFAULT_VIDEO_EXTENSION

    def _process_media(self, ffmpeg_path, downloaded, output_path, edit_config, window, report):
        args = build_filter_command(downloaded, output_path, edit_config)
        self.log(f'Processing mode: {describe_mode(edit_config)}')

        expected_duration = None
        if edit_config.trim_enabled and edit_config.trim_duration_ms > MIN_TRIM_MS:
            expected_duration = edit_config.trim_duration_ms / 1000

        def on_runner_progress(percent):
            report(window.map(percent), PHASE_PROCESSING)

        exit_code = self.runner(
            ffmpeg_path,
            args,
            on_progress=on_runner_progress,
            lib_dirs=self.config.ffmpeg_lib_dirs,
            expected_duration=expected_duration,
            on_start=self._hold_process,
            logger=self.logger,
        )
        self._release_process()
        self._raise_if_cancelled()
        if exit_code != 0:
            raise ProcessingFailed(exit_code)

    def _verify_output(self, output_path):
        if not output_path.is_file():
            raise PipelineError('Output file is missing')
        if output_path.stat().st_size == 0:
            raise PipelineError('Output file is empty')
