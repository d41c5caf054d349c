import os
import re
from datetime import datetime
from pathlib import Path

from nanoid import generate

REQUEST_ID_ALPHABET = '0123456789abcdefghijklmnopqrstuvwxyz'
UNSAFE_FILENAME_CHARS = re.compile(r'[\\/:*?"<>|]')


def generate_request_id(size=12):
    """
    Generate an id for an edit request.

    Used for tmp-<id> work directories, log file names and the progress
    tracker, so it only contains filename-safe characters.
    """
    return generate(REQUEST_ID_ALPHABET, size=size)


def sanitize_filename(name):
    """
    Make a user-supplied name safe to use as a file name.

    Args:
        name: Proposed base name (no extension)

    Returns:
        str: Name with path separators and reserved characters replaced by '_'
    """
    return UNSAFE_FILENAME_CHARS.sub('_', name or '').strip()


def claim_output_path(directory, base, suffix='', ext='.mp4'):
    """
    Reserve a file name that no other writer can take.

    Tries '<base><suffix><ext>', then '<base><suffix>_1<ext>', '_2' and so on.
    Each name is created with O_CREAT | O_EXCL, so two requests racing for
    the same name both succeed with different files and an existing file is
    never touched. The caller owns the (empty) file that is returned and must
    remove it if it ends up unused.

    Args:
        directory: Destination directory (created if missing)
        base: Base file name
        suffix: Optional descriptive suffix such as '_trimmed'
        ext: Extension with or without the leading dot

    Returns:
        Path: The claimed file
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    if ext and not ext.startswith('.'):
        ext = f'.{ext}'

    counter = 0
    while True:
        if counter == 0:
            candidate = directory / f'{base}{suffix}{ext}'
        else:
            candidate = directory / f'{base}{suffix}_{counter}{ext}'
        try:
            fd = os.open(candidate, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            counter += 1
            continue
        os.close(fd)
        return candidate


def write_log(log_path, message):
    """Append message to log file"""
    if log_path:
        os.makedirs(os.path.dirname(log_path), exist_ok=True)
        with open(log_path, 'a') as f:
            timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
            f.write(f'[{timestamp}] {message}\n')
