from huey.contrib.djhuey import task

from clips.progress_tracker import clear_progress, update_progress
from clips.service.config import get_log_dir, load_pipeline_config
from clips.service.constants import PHASE_QUEUED
from clips.service.pipeline import EditPipeline, InvalidRequest, validate_request
from clips.utils import generate_request_id, write_log


class EditRequestFailed(Exception):
    """Raised from the task so huey records the failure"""

    pass


@task()
def process_edit_request(request_id, options, edit_config):
    """
    Run one edit request in the huey worker.

    Work happens in tmp-{request_id}/ under the configured tmp root and the
    result lands in the output directory. Every step is appended to
    <log dir>/{request_id}.log and progress is published to the progress
    tracker under the request id while the task runs. The tracker entry is
    dropped when the task ends; the outcome is the task result.

    Returns:
        str: Path of the finished file

    Raises:
        EditRequestFailed: If the pipeline fails or is cancelled
    """
    log_path = get_log_dir() / f'{request_id}.log'
    write_log(log_path, '=== TASK STARTED ===')
    write_log(log_path, f'Request: {request_id}')
    write_log(log_path, f'URL: {options.source_url}')
    write_log(log_path, f'Edits: {edit_config}')

    def logger(message):
        write_log(log_path, message)

    def on_progress(progress):
        update_progress(request_id, progress.phase, progress.percent)

    config = load_pipeline_config()
    pipeline = EditPipeline(config, request_id=request_id, logger=logger)

    try:
        result = pipeline.run(options.source_url, options, edit_config, on_progress=on_progress)
    except InvalidRequest as e:
        write_log(log_path, f'=== REJECTED: {e} ===')
        raise EditRequestFailed(str(e)) from e
    finally:
        clear_progress(request_id)

    if not result.success:
        write_log(log_path, f'=== FAILED: {result.reason} ===')
        raise EditRequestFailed(result.reason)

    write_log(log_path, f'=== COMPLETED: {result.path} ===')
    return str(result.path)


def enqueue_edit_request(options, edit_config):
    """
    Validate a request and queue it for the huey worker.

    Args:
        options: DownloadOptions (source_url is the URL to fetch)
        edit_config: EditConfig

    Returns:
        str: Request id to poll with clips.progress_tracker.get_progress while it runs

    Raises:
        InvalidRequest: If the request is malformed (nothing is queued)
    """
    validate_request(getattr(options, 'source_url', None), options, edit_config)
    request_id = generate_request_id()
    update_progress(request_id, PHASE_QUEUED, 0)
    process_edit_request(request_id, options, edit_config)
    return request_id
