"""
ffmpeg process runner.

Locates the ffmpeg binary from an explicit candidate list, runs it with a
library search path that covers its bundled libraries, and turns the
Duration/time= markers it writes to stderr into a 0-99 progress value.
"""

import os
import re
import shutil
import subprocess
import threading
from collections import deque
from pathlib import Path
from typing import Optional

from clips.service.constants import RUNNER_MAX_PROGRESS

DURATION_PATTERN = re.compile(r'Duration:\s*(\d+):(\d+):(\d+\.\d+)')
TIME_PATTERN = re.compile(r'time=(\d+):(\d+):(\d+\.\d+)')
TIMESTAMP_PATTERN = re.compile(r'(\d+):(\d+):(\d+(?:\.\d+)?)')

# stderr lines kept for the log when ffmpeg fails
STDERR_TAIL_LINES = 20


class FFmpegNotFound(Exception):
    """Raised when no ffmpeg candidate resolves to an executable"""

    def __init__(self, candidates):
        self.candidates = [str(c) for c in candidates]
        super().__init__(f'ffmpeg binary not found (searched: {", ".join(self.candidates)})')


def find_ffmpeg_binary(candidates):
    """
    Resolve the first usable ffmpeg binary.

    Args:
        candidates: Ordered absolute paths or names to look up on PATH

    Returns:
        str: Path to the executable

    Raises:
        FFmpegNotFound: If none of the candidates exists
    """
    for candidate in candidates:
        if not candidate:
            continue
        candidate = str(candidate)
        if os.sep in candidate:
            path = Path(candidate).expanduser()
            if path.is_file() and os.access(path, os.X_OK):
                return str(path)
        else:
            found = shutil.which(candidate)
            if found:
                return found
    raise FFmpegNotFound(candidates)


def build_environment(binary_path, lib_dirs=(), base_env=None):
    """
    Environment for the ffmpeg child process.

    LD_LIBRARY_PATH gets the binary's own directory and every existing extra
    library directory, ahead of anything inherited.

    Args:
        binary_path: Resolved ffmpeg path
        lib_dirs: Extra shared-library directories
        base_env: Environment to extend (defaults to os.environ)

    Returns:
        dict: New environment mapping
    """
    env = dict(os.environ if base_env is None else base_env)

    search_path = []
    binary_dir = os.path.dirname(str(binary_path))
    if binary_dir:
        search_path.append(binary_dir)
    for lib_dir in lib_dirs:
        lib_dir = str(lib_dir)
        if lib_dir and os.path.isdir(lib_dir) and lib_dir not in search_path:
            search_path.append(lib_dir)

    inherited = env.get('LD_LIBRARY_PATH')
    if inherited:
        search_path.append(inherited)

    if search_path:
        env['LD_LIBRARY_PATH'] = os.pathsep.join(search_path)
    return env


def _match_to_seconds(match):
    hours, minutes, seconds = match.groups()
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


def parse_timestamp(text):
    """
    Parse an ffmpeg H:MM:SS.ms timestamp.

    Returns:
        float: Seconds

    Raises:
        ValueError: If the text is not a timestamp
    """
    match = TIMESTAMP_PATTERN.fullmatch(text.strip())
    if not match:
        raise ValueError(f'Invalid timestamp: {text!r}')
    return _match_to_seconds(match)


class ProgressParser:
    """
    Incremental progress from ffmpeg stderr lines.

    The first Duration announcement is kept as the total length unless an
    expected duration was given up front. Each time= marker after that
    yields a percentage clamped to [0, 99]; feed() returns it only when it
    differs from the last one returned.
    """

    def __init__(self, expected_duration: Optional[float] = None):
        self.duration = expected_duration if expected_duration and expected_duration > 0 else None
        self.percent = None

    def feed(self, line):
        if self.duration is None:
            match = DURATION_PATTERN.search(line)
            if match:
                duration = _match_to_seconds(match)
                if duration > 0:
                    self.duration = duration
            return None

        match = TIME_PATTERN.search(line)
        if not match:
            return None

        percent = int(_match_to_seconds(match) / self.duration * 100)
        percent = max(0, min(percent, RUNNER_MAX_PROGRESS))
        if percent == self.percent:
            return None
        self.percent = percent
        return percent


def _drain(stream):
    # Keep reading so the child never blocks on a full stdout pipe
    for _ in iter(lambda: stream.read(8192), ''):
        pass
    stream.close()


def run_ffmpeg(
    binary_path,
    args,
    on_progress=None,
    lib_dirs=(),
    expected_duration=None,
    on_start=None,
    logger=None,
):
    """
    Run ffmpeg to completion.

    Args:
        binary_path: Resolved ffmpeg path
        args: Arguments from build_filter_command()
        on_progress: Optional callable(int) called with each new 0-99 value
        lib_dirs: Extra shared-library directories
        expected_duration: Output length in seconds, if already known
        on_start: Optional callable(Popen) called once the process is running
        logger: Optional callable(str) for logging

    Returns:
        int: Exit code (non-zero is returned, not raised)

    Raises:
        FFmpegNotFound: If the binary cannot be executed
    """
    def log(message):
        if logger:
            logger(message)

    cmd = [str(binary_path)] + [str(arg) for arg in args]
    log(f'Running: {" ".join(cmd)}')

    try:
        process = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            errors='replace',
            env=build_environment(binary_path, lib_dirs),
        )
    except FileNotFoundError as e:
        raise FFmpegNotFound([binary_path]) from e

    if on_start:
        on_start(process)

    drain = threading.Thread(target=_drain, args=(process.stdout,), daemon=True)
    drain.start()

    parser = ProgressParser(expected_duration)
    tail = deque(maxlen=STDERR_TAIL_LINES)
    try:
        # Text mode splits on \r too, so in-place progress lines arrive separately
        for line in process.stderr:
            tail.append(line.rstrip())
            percent = parser.feed(line)
            if percent is not None and on_progress:
                on_progress(percent)
    except BaseException:
        process.kill()
        raise
    finally:
        process.stderr.close()
        exit_code = process.wait()
        drain.join()

    if exit_code != 0:
        log(f'ffmpeg exited with code {exit_code}')
        for line in tail:
            if line:
                log(line)
    else:
        log('ffmpeg finished')
    return exit_code
