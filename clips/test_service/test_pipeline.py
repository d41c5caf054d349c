"""
Tests for service/pipeline.py

A synthetic extraction client, probe and runner stand in for yt-dlp,
ffprobe and ffmpeg.
"""

import tempfile
from pathlib import Path
from unittest.mock import MagicMock

from django.test import TestCase

from clips.service.config import PipelineConfig
from clips.service.download import ExtractionError
from clips.service.edit_config import DownloadOptions, EditConfig, OutputKind
from clips.service.geometry import CropRect
from clips.service.media_info import ProbeResult
from clips.service.pipeline import (
    EditPipeline,
    InvalidRequest,
    PipelineProgress,
    ProgressWindow,
    validate_request,
)

URL = 'https://example.com/watch?v=abc'


class FakeClient:
    """Extraction client that writes a file and replays progress values"""

    def __init__(self, progress=(), content=b'downloaded video', filename='clip.mp4', error=None, hook=None):
        self.progress = progress
        self.content = content
        self.filename = filename
        self.error = error
        self.hook = hook
        self.calls = []

    def download(self, url, format_selector, resolution, destination_dir, base_name=None,
                 on_progress=None, cancel_event=None):
        self.calls.append({
            'url': url,
            'format_selector': format_selector,
            'resolution': resolution,
            'destination_dir': Path(destination_dir),
            'base_name': base_name,
        })
        for percent in self.progress:
            on_progress(percent, f'{percent}%')
        if self.hook:
            self.hook()
        if self.error:
            raise self.error
        name = f'{base_name}.mp4' if base_name else self.filename
        path = Path(destination_dir) / name
        path.write_bytes(self.content)
        return path


class FakeRunner:
    """ffmpeg stand-in that writes the output file and returns an exit code"""

    def __init__(self, exit_code=0, progress=(), output=b'processed', hook=None):
        self.exit_code = exit_code
        self.progress = progress
        self.output = output
        self.hook = hook
        self.calls = []

    def __call__(self, binary_path, args, on_progress=None, lib_dirs=(), expected_duration=None,
                 on_start=None, logger=None):
        self.calls.append({
            'binary_path': binary_path,
            'args': args,
            'lib_dirs': lib_dirs,
            'expected_duration': expected_duration,
        })
        for percent in self.progress:
            on_progress(percent)
        if self.output is not None:
            Path(args[-1]).write_bytes(self.output)
        if self.hook:
            self.hook()
        return self.exit_code


class EditPipelineTestBase(TestCase):
    def setUp(self):
        temp_dir = tempfile.TemporaryDirectory()
        self.addCleanup(temp_dir.cleanup)
        self.root = Path(temp_dir.name)
        self.output_dir = self.root / 'out'
        self.tmp_root = self.root / 'tmp'
        self.output_dir.mkdir()
        self.tmp_root.mkdir()
        self.config = PipelineConfig(
            output_dir=self.output_dir,
            tmp_root=self.tmp_root,
            ffmpeg_path='/usr/bin/ffmpeg',
            ffmpeg_candidates=('ffmpeg', '/usr/bin/ffmpeg'),
            ffmpeg_lib_dirs=('/opt/ffmpeg/lib',),
        )
        self.options = DownloadOptions(source_url=URL)
        self.progress = []

    def make_pipeline(self, client=None, runner=None, prober=None, config=None):
        return EditPipeline(
            config or self.config,
            client=client or FakeClient(),
            prober=prober or MagicMock(),
            runner=runner or FakeRunner(),
        )

    def run_pipeline(self, pipeline, edit_config, options=None):
        return pipeline.run(URL, options or self.options, edit_config, on_progress=self.progress.append)

    def phase_values(self, phase):
        return [p.percent for p in self.progress if p.phase == phase]

    def assert_tmp_empty(self):
        self.assertEqual(list(self.tmp_root.iterdir()), [])


class PlainDownloadTest(EditPipelineTestBase):
    """Requests without edits"""

    def test_download_is_moved_to_output(self):
        """Without edits the downloaded file is the result and ffmpeg never runs"""
        runner = FakeRunner()
        pipeline = self.make_pipeline(runner=runner)

        result = self.run_pipeline(pipeline, EditConfig())

        self.assertTrue(result.success)
        self.assertEqual(result.path, self.output_dir / 'clip.mp4')
        self.assertEqual(result.path.read_bytes(), b'downloaded video')
        self.assertEqual(runner.calls, [])
        self.assertEqual(self.progress[-1], PipelineProgress(100, 'Complete'))
        self.assert_tmp_empty()

    def test_download_uses_private_work_dir(self):
        """The client downloads into tmp-<request id>, never the output dir"""
        client = FakeClient()
        pipeline = self.make_pipeline(client=client)

        self.run_pipeline(pipeline, EditConfig())

        self.assertEqual(
            client.calls[0]['destination_dir'], self.tmp_root / f'tmp-{pipeline.request_id}'
        )

    def test_progress_is_monotonic_without_edits(self):
        """Noisy download progress is held at its highest value on the 0-100 scale"""
        pipeline = self.make_pipeline(client=FakeClient(progress=[10, 5, 20, 15, 30]))

        self.run_pipeline(pipeline, EditConfig())

        self.assertEqual(self.phase_values('Downloading'), [10, 10, 20, 20, 30])

    def test_filename_collision(self):
        """An existing clip.mp4 is left alone and the new file becomes clip_1.mp4"""
        existing = self.output_dir / 'clip.mp4'
        existing.write_bytes(b'original')

        result = self.run_pipeline(self.make_pipeline(), EditConfig())

        self.assertTrue(result.success)
        self.assertEqual(result.path, self.output_dir / 'clip_1.mp4')
        self.assertEqual(existing.read_bytes(), b'original')

    def test_repeated_collisions(self):
        """Counters keep going until a free name is found"""
        for name in ('clip.mp4', 'clip_1.mp4', 'clip_2.mp4'):
            (self.output_dir / name).write_bytes(b'taken')

        result = self.run_pipeline(self.make_pipeline(), EditConfig())

        self.assertEqual(result.path.name, 'clip_3.mp4')

    def test_custom_base_name(self):
        """A caller-supplied name wins and is passed to the client"""
        client = FakeClient()
        options = DownloadOptions(source_url=URL, custom_base_name='My clip')

        result = self.run_pipeline(self.make_pipeline(client=client), EditConfig(), options=options)

        self.assertEqual(result.path.name, 'My clip.mp4')
        self.assertEqual(client.calls[0]['base_name'], 'My clip')

    def test_no_ffmpeg_needed_without_edits(self):
        config = PipelineConfig(output_dir=self.output_dir, tmp_root=self.tmp_root, ffmpeg_path=None)
        result = self.run_pipeline(self.make_pipeline(config=config), EditConfig())
        self.assertTrue(result.success)


class EditedDownloadTest(EditPipelineTestBase):
    """Requests with trim, crop or GIF output"""

    def test_trim(self):
        """Trim runs ffmpeg once with the known clip length and adds the suffix"""
        runner = FakeRunner(progress=[0, 50, 99])
        edit_config = EditConfig(trim_enabled=True, trim_start_ms=1000, trim_end_ms=3000)

        result = self.run_pipeline(self.make_pipeline(runner=runner), edit_config)

        self.assertTrue(result.success, result.reason)
        self.assertEqual(result.path, self.output_dir / 'clip_trimmed.mp4')
        self.assertEqual(result.path.read_bytes(), b'processed')
        self.assertEqual(len(runner.calls), 1)
        call = runner.calls[0]
        self.assertEqual(call['binary_path'], '/usr/bin/ffmpeg')
        self.assertEqual(call['lib_dirs'], ('/opt/ffmpeg/lib',))
        self.assertEqual(call['expected_duration'], 2.0)
        self.assertIn('-ss', call['args'])
        self.assertEqual(call['args'][-1], str(result.path))
        self.assert_tmp_empty()

    def test_progress_windows_with_edits(self):
        """Download maps into 0-80, processing into 80-100, and the whole stream never decreases"""
        client = FakeClient(progress=[10, 5, 20, 15, 30])
        runner = FakeRunner(progress=[0, 50, 99])
        edit_config = EditConfig(output_kind=OutputKind.ANIMATED)

        self.run_pipeline(self.make_pipeline(client=client, runner=runner), edit_config)

        self.assertEqual(self.phase_values('Downloading'), [8, 8, 16, 16, 24])
        self.assertEqual(self.phase_values('Processing'), [80, 80, 90, 99])
        self.assertEqual(self.phase_values('Complete'), [100])
        percents = [p.percent for p in self.progress]
        self.assertEqual(percents, sorted(percents))

    def test_gif_output(self):
        edit_config = EditConfig(output_kind=OutputKind.ANIMATED)
        runner = FakeRunner()

        result = self.run_pipeline(self.make_pipeline(runner=runner), edit_config)

        self.assertEqual(result.path.name, 'clip_gif.gif')
        self.assertIn('-filter_complex', runner.calls[0]['args'])

    def test_suffix_can_be_disabled(self):
        config = PipelineConfig(
            output_dir=self.output_dir,
            tmp_root=self.tmp_root,
            ffmpeg_path='/usr/bin/ffmpeg',
            append_edit_suffix=False,
        )
        edit_config = EditConfig(trim_enabled=True, trim_start_ms=0, trim_end_ms=5000)

        result = self.run_pipeline(self.make_pipeline(config=config), edit_config)

        self.assertEqual(result.path.name, 'clip.mp4')

    def test_crop_rescaled_to_actual_size(self):
        """A crop drawn on 1280x720 is rescaled once to the 640x360 file that arrived"""
        prober = MagicMock(return_value=ProbeResult(duration_ms=10000, width=640, height=360))
        runner = FakeRunner()
        edit_config = EditConfig(
            crop_enabled=True, crop=CropRect(200, 100, 640, 360), crop_reference=(1280, 720)
        )

        result = self.run_pipeline(self.make_pipeline(runner=runner, prober=prober), edit_config)

        self.assertTrue(result.success, result.reason)
        prober.assert_called_once()
        args = runner.calls[0]['args']
        self.assertEqual(args[args.index('-vf') + 1], 'crop=320:180:100:50')
        self.assertEqual(result.path.name, 'clip_cropped.mp4')

    def test_crop_rescale_respects_rotation(self):
        """A portrait file with 90 degree rotation is measured as landscape"""
        prober = MagicMock(
            return_value=ProbeResult(duration_ms=10000, width=1080, height=1920, rotation_degrees=90)
        )
        runner = FakeRunner()
        edit_config = EditConfig(
            crop_enabled=True, crop=CropRect(0, 0, 640, 360), crop_reference=(1280, 720)
        )

        self.run_pipeline(self.make_pipeline(runner=runner, prober=prober), edit_config)

        args = runner.calls[0]['args']
        self.assertEqual(args[args.index('-vf') + 1], 'crop=960:540:0:0')

    def test_crop_unchanged_when_sizes_match(self):
        prober = MagicMock(return_value=ProbeResult(duration_ms=10000, width=1280, height=720))
        runner = FakeRunner()
        edit_config = EditConfig(
            crop_enabled=True, crop=CropRect(10, 20, 300, 200), crop_reference=(1280, 720)
        )

        self.run_pipeline(self.make_pipeline(runner=runner, prober=prober), edit_config)

        args = runner.calls[0]['args']
        self.assertEqual(args[args.index('-vf') + 1], 'crop=300:200:10:20')

    def test_no_probe_without_crop(self):
        prober = MagicMock()
        edit_config = EditConfig(trim_enabled=True, trim_start_ms=0, trim_end_ms=5000)
        self.run_pipeline(self.make_pipeline(prober=prober), edit_config)
        prober.assert_not_called()


class FailureTest(EditPipelineTestBase):
    """Failure paths always clean up"""

    def test_nonzero_exit_cleans_up(self):
        """A failing ffmpeg leaves no temp files and no partial output"""
        runner = FakeRunner(exit_code=1, output=b'partial')
        edit_config = EditConfig(trim_enabled=True, trim_start_ms=0, trim_end_ms=5000)

        result = self.run_pipeline(self.make_pipeline(runner=runner), edit_config)

        self.assertFalse(result.success)
        self.assertEqual(result.reason, 'Processing failed (exit 1)')
        self.assertFalse(result.cancelled)
        self.assert_tmp_empty()
        self.assertEqual(list(self.output_dir.iterdir()), [])
        self.assertEqual(self.progress[-1].phase, 'Failed')

    def test_interrupt_removes_partial_output(self):
        """Ctrl-C during ffmpeg propagates but leaves no half-written clip behind"""

        def interrupt():
            raise KeyboardInterrupt

        runner = FakeRunner(output=b'half written', hook=interrupt)
        edit_config = EditConfig(trim_enabled=True, trim_start_ms=0, trim_end_ms=5000)

        with self.assertRaises(KeyboardInterrupt):
            self.run_pipeline(self.make_pipeline(runner=runner), edit_config)

        self.assertEqual(list(self.output_dir.iterdir()), [])
        self.assert_tmp_empty()

    def test_empty_output_is_failure(self):
        runner = FakeRunner(output=b'')
        edit_config = EditConfig(output_kind=OutputKind.ANIMATED)

        result = self.run_pipeline(self.make_pipeline(runner=runner), edit_config)

        self.assertFalse(result.success)
        self.assertEqual(result.reason, 'Output file is empty')
        self.assertEqual(list(self.output_dir.iterdir()), [])

    def test_missing_ffmpeg(self):
        """Edits without an ffmpeg binary fail with the searched locations"""
        config = PipelineConfig(
            output_dir=self.output_dir,
            tmp_root=self.tmp_root,
            ffmpeg_path=None,
            ffmpeg_candidates=('ffmpeg', '/opt/bin/ffmpeg'),
        )
        edit_config = EditConfig(output_kind=OutputKind.ANIMATED)

        result = self.run_pipeline(self.make_pipeline(config=config), edit_config)

        self.assertFalse(result.success)
        self.assertIn('ffmpeg binary not found', result.reason)
        self.assertIn('/opt/bin/ffmpeg', result.reason)
        self.assert_tmp_empty()
        self.assertEqual(list(self.output_dir.iterdir()), [])

    def test_extraction_error(self):
        client = FakeClient(error=ExtractionError('Unsupported URL: https://example.com'))

        result = self.run_pipeline(self.make_pipeline(client=client), EditConfig())

        self.assertFalse(result.success)
        self.assertIn('Unsupported URL', result.reason)
        self.assert_tmp_empty()

    def test_empty_download(self):
        client = FakeClient(content=b'')

        result = self.run_pipeline(self.make_pipeline(client=client), EditConfig())

        self.assertFalse(result.success)
        self.assertEqual(result.reason, 'Downloaded file is empty')
        self.assertEqual(list(self.output_dir.iterdir()), [])
        self.assert_tmp_empty()

    def test_probe_failure(self):
        prober = MagicMock(side_effect=RuntimeError('ffprobe exploded'))
        edit_config = EditConfig(
            crop_enabled=True, crop=CropRect(0, 0, 100, 100), crop_reference=(1280, 720)
        )

        result = self.run_pipeline(self.make_pipeline(prober=prober), edit_config)

        self.assertFalse(result.success)
        self.assertEqual(result.reason, 'ffprobe exploded')
        self.assert_tmp_empty()

    def test_invalid_request_is_rejected_before_download(self):
        client = FakeClient()
        pipeline = self.make_pipeline(client=client)

        with self.assertRaises(InvalidRequest):
            pipeline.run('ftp://example.com/file', self.options, EditConfig())
        with self.assertRaises(InvalidRequest):
            pipeline.run('', self.options, EditConfig())

        self.assertEqual(client.calls, [])
        self.assert_tmp_empty()


class CancelTest(EditPipelineTestBase):
    """Cancellation"""

    def test_cancel_during_download(self):
        """A cancelled download never reaches processing"""
        runner = FakeRunner()
        client = FakeClient()
        pipeline = self.make_pipeline(client=client, runner=runner)
        client.hook = pipeline.cancel
        edit_config = EditConfig(output_kind=OutputKind.ANIMATED)

        result = self.run_pipeline(pipeline, edit_config)

        self.assertFalse(result.success)
        self.assertTrue(result.cancelled)
        self.assertEqual(runner.calls, [])
        self.assert_tmp_empty()
        self.assertEqual(list(self.output_dir.iterdir()), [])
        self.assertEqual(self.progress[-1].phase, 'Cancelled')

    def test_cancel_during_processing(self):
        """Cancelling while ffmpeg runs removes the partial output"""
        runner = FakeRunner(exit_code=-15, output=b'partial')
        pipeline = self.make_pipeline(runner=runner)
        runner.hook = pipeline.cancel
        edit_config = EditConfig(trim_enabled=True, trim_start_ms=0, trim_end_ms=5000)

        result = self.run_pipeline(pipeline, edit_config)

        self.assertTrue(result.cancelled)
        self.assertEqual(result.reason, 'Cancelled')
        self.assert_tmp_empty()
        self.assertEqual(list(self.output_dir.iterdir()), [])

    def test_cancel_terminates_running_process(self):
        pipeline = self.make_pipeline()
        process = MagicMock()
        process.poll.return_value = None
        pipeline._hold_process(process)

        pipeline.cancel()

        process.terminate.assert_called_once()

    def test_process_started_after_cancel_is_terminated(self):
        pipeline = self.make_pipeline()
        pipeline.cancel()
        process = MagicMock()

        pipeline._hold_process(process)

        process.terminate.assert_called_once()


class HelpersTest(TestCase):
    """Tests for ProgressWindow and validate_request"""

    def test_progress_window(self):
        window = ProgressWindow(80, 20)
        self.assertEqual([window.map(p) for p in [0, 10, 5, 99, 100]], [80, 82, 82, 99, 100])

    def test_validate_request(self):
        validate_request(URL, DownloadOptions(source_url=URL), EditConfig())
        with self.assertRaises(InvalidRequest):
            validate_request('example.com/video', DownloadOptions(source_url=URL), EditConfig())
        with self.assertRaises(InvalidRequest):
            validate_request(URL, None, EditConfig())
        with self.assertRaises(InvalidRequest):
            validate_request(URL, DownloadOptions(source_url=URL), None)
        with self.assertRaises(InvalidRequest):
            validate_request(URL, DownloadOptions(source_url=URL, format_selector=''), EditConfig())
