import tempfile
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from django.test import TestCase

from clips.utils import claim_output_path, generate_request_id, sanitize_filename, write_log


class ClaimOutputPathTest(TestCase):
    """Tests for claim_output_path"""

    def test_first_claim_uses_plain_name(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            path = claim_output_path(temp_dir, 'clip', '_trimmed', '.mp4')
            self.assertEqual(path, Path(temp_dir) / 'clip_trimmed.mp4')
            self.assertTrue(path.exists())

    def test_collisions_get_counters(self):
        """Existing files are never reused or touched"""
        with tempfile.TemporaryDirectory() as temp_dir:
            existing = Path(temp_dir) / 'clip.mp4'
            existing.write_bytes(b'keep me')

            first = claim_output_path(temp_dir, 'clip')
            second = claim_output_path(temp_dir, 'clip')

            self.assertEqual(first.name, 'clip_1.mp4')
            self.assertEqual(second.name, 'clip_2.mp4')
            self.assertEqual(existing.read_bytes(), b'keep me')

    def test_concurrent_claims_are_distinct(self):
        """Threads racing for the same name each get their own file"""
        workers = 8
        barrier = threading.Barrier(workers)

        with tempfile.TemporaryDirectory() as temp_dir:
            existing = Path(temp_dir) / 'clip.mp4'
            existing.write_bytes(b'keep me')

            def claim(_):
                barrier.wait(timeout=5)
                return claim_output_path(temp_dir, 'clip')

            with ThreadPoolExecutor(max_workers=workers) as executor:
                paths = list(executor.map(claim, range(workers)))

            self.assertEqual(len(set(paths)), workers)
            self.assertNotIn(existing, paths)
            self.assertEqual(
                sorted(p.name for p in paths),
                sorted(f'clip_{i}.mp4' for i in range(1, workers + 1)),
            )
            self.assertEqual(existing.read_bytes(), b'keep me')

    def test_extension_without_dot_and_missing_dir(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            path = claim_output_path(Path(temp_dir) / 'nested', 'clip', ext='gif')
            self.assertEqual(path.name, 'clip.gif')


class MiscUtilsTest(TestCase):
    def test_sanitize_filename(self):
        self.assertEqual(sanitize_filename('a/b:c?'), 'a_b_c_')
        self.assertEqual(sanitize_filename(None), '')

    def test_generate_request_id(self):
        request_id = generate_request_id()
        self.assertEqual(len(request_id), 12)
        self.assertRegex(request_id, r'^[0-9a-z]+$')

    def test_write_log(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            log_path = Path(temp_dir) / 'logs' / 'req.log'
            write_log(log_path, 'first')
            write_log(log_path, 'second')
            lines = log_path.read_text().splitlines()
            self.assertEqual(len(lines), 2)
            self.assertTrue(lines[1].endswith('] second'))
