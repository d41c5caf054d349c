"""
Django management command for downloading and editing a clip.

This is a thin CLI wrapper around the edit pipeline.
"""
import json
from pathlib import Path

from django.core.management.base import BaseCommand, CommandError

from clips.service.config import (
    get_default_format,
    get_default_resolution,
    get_gif_defaults,
    load_pipeline_config,
)
from clips.service.download import ExtractionError, YtDlpClient
from clips.service.edit_config import (
    DownloadOptions,
    EditConfig,
    InvalidEditConfig,
    OutputKind,
    estimate_animated_size,
)
from clips.service.filters import build_filter_command, describe_mode
from clips.service.geometry import CropRect
from clips.service.media_info import format_duration, format_file_size
from clips.service.pipeline import EditPipeline, InvalidRequest, validate_request


class Command(BaseCommand):
    help = 'Download media with yt-dlp and optionally trim, crop or convert it to GIF'

    def add_arguments(self, parser):
        parser.add_argument('url', type=str, help='URL of the media to download')
        parser.add_argument(
            '--outdir',
            type=str,
            default=None,
            help='Output directory (default: CLIPSTASH_OUTPUT_DIR)'
        )
        parser.add_argument(
            '--format',
            type=str,
            default=None,
            help='Format to request, e.g. bestvideo+bestaudio/best or bestaudio'
        )
        parser.add_argument(
            '--resolution',
            type=str,
            default=None,
            help='Maximum height such as 720, or best'
        )
        parser.add_argument('--name', type=str, default=None, help='Output base name (no extension)')
        parser.add_argument(
            '--trim',
            type=int,
            nargs=2,
            metavar=('START_MS', 'END_MS'),
            help='Keep only this window (milliseconds)'
        )
        parser.add_argument(
            '--crop',
            type=int,
            nargs=4,
            metavar=('X', 'Y', 'W', 'H'),
            help='Crop box in pixels of the reference frame'
        )
        parser.add_argument(
            '--crop-ref',
            type=int,
            nargs=2,
            metavar=('W', 'H'),
            help='Frame size the crop box was measured against'
        )
        parser.add_argument('--gif', action='store_true', help='Produce an animated GIF')
        parser.add_argument('--gif-fps', type=int, default=None, help='GIF frame rate')
        parser.add_argument('--gif-width', type=int, default=None, help='GIF max width (even)')
        parser.add_argument(
            '--suffix',
            dest='suffix',
            action='store_true',
            default=None,
            help='Append _trimmed/_cropped/_gif to the output name'
        )
        parser.add_argument(
            '--no-suffix',
            dest='suffix',
            action='store_false',
            help='Do not append edit suffixes to the output name'
        )
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Fetch metadata and show the ffmpeg arguments without downloading'
        )
        parser.add_argument('--verbose', action='store_true', help='Enable verbose output')
        parser.add_argument('--json', action='store_true', help='Output result as JSON')

    def build_edit_config(self, options):
        """Build an EditConfig from parsed options, raising CommandError if invalid"""
        fps_default, width_default = get_gif_defaults()
        trim = options.get('trim')
        crop = options.get('crop')
        crop_ref = options.get('crop_ref')

        if crop_ref and not crop:
            raise CommandError('--crop-ref requires --crop')

        try:
            return EditConfig(
                trim_enabled=bool(trim),
                trim_start_ms=trim[0] if trim else 0,
                trim_end_ms=trim[1] if trim else 0,
                crop_enabled=bool(crop),
                crop=CropRect(*crop) if crop else CropRect(0, 0, 0, 0),
                crop_reference=tuple(crop_ref) if crop_ref else None,
                output_kind=OutputKind.ANIMATED if options.get('gif') else OutputKind.PRIMARY,
                animated_fps=options.get('gif_fps') or fps_default,
                animated_max_width=options.get('gif_width') or width_default,
            )
        except InvalidEditConfig as e:
            raise CommandError(f'Invalid edit: {e}')

    def handle(self, *args, **options):
        url = options['url']
        verbose = options['verbose']
        output_json = options['json']

        download_options = DownloadOptions(
            source_url=url,
            format_selector=options['format'] or get_default_format(),
            resolution_hint=options['resolution'] or get_default_resolution(),
            custom_base_name=options['name'],
        )
        edit_config = self.build_edit_config(options)

        try:
            validate_request(url, download_options, edit_config)
        except InvalidRequest as e:
            raise CommandError(str(e))

        overrides = {}
        if options['outdir']:
            overrides['output_dir'] = Path(options['outdir'])
        if options['suffix'] is not None:
            overrides['append_edit_suffix'] = options['suffix']
        config = load_pipeline_config(**overrides)

        def logger(message):
            if verbose and not output_json:
                self.stdout.write(message)

        if options['dry_run']:
            self.dry_run(url, download_options, edit_config, config, logger, output_json)
            return

        if edit_config.has_edits and not config.ffmpeg_path:
            raise CommandError(
                f'ffmpeg binary not found (searched: {", ".join(config.ffmpeg_candidates)})'
            )

        last_reported = {}

        def on_progress(progress):
            if not verbose or output_json:
                return
            if last_reported.get('phase') == progress.phase and last_reported.get('percent') == progress.percent:
                return
            last_reported.update(phase=progress.phase, percent=progress.percent)
            self.stdout.write(f'  {progress.phase}: {progress.percent}%')

        if verbose and not output_json:
            self.stdout.write(self.style.NOTICE(f'Clipping: {url}'))

        pipeline = EditPipeline(config, logger=logger)
        result = pipeline.run(url, download_options, edit_config, on_progress=on_progress)

        if not result.success:
            raise CommandError(f'Clip failed: {result.reason}')

        file_size = result.path.stat().st_size
        if output_json:
            output = {
                'success': True,
                'url': url,
                'request_id': pipeline.request_id,
                'mode': describe_mode(edit_config) if edit_config.has_edits else 'download',
                'output_path': str(result.path),
                'file_size': file_size,
            }
            self.stdout.write(json.dumps(output, indent=2))
        else:
            self.stdout.write(self.style.SUCCESS('✓ Clip complete'))
            self.stdout.write(f'  URL: {url}')
            self.stdout.write(f'  Output: {result.path}')
            self.stdout.write(f'  Size: {format_file_size(file_size)}')

    def dry_run(self, url, download_options, edit_config, config, logger, output_json):
        if not output_json:
            self.stdout.write(self.style.WARNING('DRY RUN MODE - No files will be downloaded'))
            self.stdout.write(f'URL: {url}')
            self.stdout.write(f'Output directory: {config.output_dir}')

        client = YtDlpClient(proxy=config.ytdlp_proxy, extra_args=config.ytdlp_extra_args, logger=logger)
        try:
            metadata = client.fetch_metadata(url)
        except ExtractionError as e:
            raise CommandError(f'Dry run failed: {e}')

        mode = describe_mode(edit_config) if edit_config.has_edits else 'download'
        ffmpeg_args = []
        if edit_config.has_edits:
            placeholder = Path(config.tmp_root) / 'tmp-<id>' / 'download.mp4'
            ext = '.gif' if edit_config.is_animated else '.mp4'
            ffmpeg_args = build_filter_command(placeholder, config.output_dir / f'output{ext}', edit_config)

        estimated_size = None
        if edit_config.is_animated:
            estimated_size = estimate_animated_size(edit_config, metadata.duration_seconds * 1000)

        if output_json:
            result = {
                'dry_run': True,
                'url': url,
                'title': metadata.title,
                'platform': metadata.platform,
                'duration_seconds': metadata.duration_seconds,
                'mode': mode,
                'ffmpeg_args': ffmpeg_args,
            }
            if estimated_size is not None:
                result['estimated_size'] = estimated_size
            self.stdout.write(json.dumps(result, indent=2))
            return

        self.stdout.write(f'Title: {metadata.title}')
        self.stdout.write(f'Platform: {metadata.platform}')
        self.stdout.write(f'Duration: {format_duration(metadata.duration_seconds * 1000)}')
        self.stdout.write(f'Mode: {mode}')
        if ffmpeg_args:
            self.stdout.write(f'ffmpeg {" ".join(ffmpeg_args)}')
        if estimated_size is not None:
            self.stdout.write(f'Estimated GIF size: {format_file_size(estimated_size)}')
        self.stdout.write(self.style.SUCCESS('Dry run complete'))
