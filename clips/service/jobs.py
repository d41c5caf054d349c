"""
Cancellable handle for a pipeline running on a worker thread.

start_edit() validates the request on the caller's thread, then runs the
pipeline on an executor and returns an EditJob exposing the future, the
latest progress, progress subscriptions and cancellation.
"""

import threading
from concurrent.futures import ThreadPoolExecutor

from clips.service.pipeline import validate_request


class EditJob:
    """Handle for one running EditPipeline"""

    def __init__(self, pipeline):
        self.pipeline = pipeline
        self.future = None
        self._subscribers = []
        self._lock = threading.Lock()

    @property
    def request_id(self):
        return self.pipeline.request_id

    @property
    def progress(self):
        """Latest PipelineProgress"""
        return self.pipeline.progress

    def subscribe(self, callback):
        """
        Register callable(PipelineProgress) for future progress reports.

        Reports made before this call are not replayed; pass on_progress to
        start_edit() to see all of them. Callbacks run on the worker thread.
        """
        with self._lock:
            self._subscribers.append(callback)

    def _publish(self, progress):
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            callback(progress)

    def cancel(self):
        """Cancel the job; its result becomes a failure with cancelled=True."""
        self.pipeline.cancel()

    def done(self):
        return self.future is not None and self.future.done()

    def result(self, timeout=None):
        """
        Wait for the terminal PipelineResult.

        Raises:
            concurrent.futures.TimeoutError: If the job is still running after timeout
        """
        return self.future.result(timeout=timeout)


def start_edit(pipeline, url, options, edit_config, executor=None, on_progress=None):
    """
    Start a pipeline in the background.

    Args:
        pipeline: EditPipeline for this request
        url: Source URL
        options: DownloadOptions
        edit_config: EditConfig
        executor: Optional concurrent.futures.Executor (a single-thread pool is created otherwise)
        on_progress: Optional callable(PipelineProgress), subscribed before the job starts
            so it sees every report

    Returns:
        EditJob

    Raises:
        InvalidRequest: If the request is malformed (nothing is started)
    """
    validate_request(url, options, edit_config)

    job = EditJob(pipeline)
    if on_progress is not None:
        job.subscribe(on_progress)
    if executor is None:
        own_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f'edit-{pipeline.request_id}')
        job.future = own_executor.submit(pipeline.run, url, options, edit_config, job._publish)
        own_executor.shutdown(wait=False)
    else:
        job.future = executor.submit(pipeline.run, url, options, edit_config, job._publish)
    return job
