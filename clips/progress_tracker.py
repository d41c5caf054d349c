"""
Progress tracker for edit requests.

Thread-safe store of the latest progress per request id. The huey task
writes to it; anything polling for status (the clip command, tests) reads
from it.
"""

import threading
from datetime import datetime

# Format: {request_id: {'phase': str, 'progress': int, 'updated_at': datetime}}
_progress_store = {}
_lock = threading.Lock()


def update_progress(request_id, phase, progress=None):
    """
    Record the latest progress for a request.

    Args:
        request_id: Edit request id
        phase: Phase label (Queued, Downloading, Processing, Complete, Failed, Cancelled)
        progress: Optional progress percentage (0-100)
    """
    with _lock:
        _progress_store[request_id] = {
            'phase': phase,
            'progress': progress,
            'updated_at': datetime.now(),
        }


def get_progress(request_id):
    """
    Get the latest progress for a request.

    Returns:
        dict with 'phase', 'progress' and 'updated_at', or None if unknown
    """
    with _lock:
        entry = _progress_store.get(request_id)
        return dict(entry) if entry else None


def clear_progress(request_id):
    with _lock:
        _progress_store.pop(request_id, None)
