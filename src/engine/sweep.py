"""Threshold sweep — one sorted frame per threshold value, in process.

Decodes the source once, sorts it at every threshold and writes each result
as ``NNN-<basename>`` so an image-sequence encoder can pick the frames up in
order.
"""

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable

import sentry_sdk

from effects import pixelsort
from errors import IOFailure
from imaging.codec import decode, encode

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLDS = range(0, 256)


class SweepStatus(Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETE = "complete"
    CANCELLED = "cancelled"
    ERROR = "error"


@dataclass
class SweepJob:
    """Tracks state of a sweep."""

    status: SweepStatus = SweepStatus.IDLE
    current_frame: int = 0
    total_frames: int = 0
    error: str | None = None
    output_dir: str = ""
    frames: list[str] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock)
    _cancel_event: threading.Event = field(default_factory=threading.Event)
    _thread: threading.Thread | None = field(default=None, repr=False)

    @property
    def progress(self) -> float:
        if self.total_frames == 0:
            return 0.0
        return self.current_frame / self.total_frames

    def cancel(self):
        self._cancel_event.set()


def frame_name(index: int, source_path: str) -> str:
    """Frame file name for sweep position ``index``."""
    return f"{index:03d}-{Path(source_path).name}"


def default_output_dir(source_path: str) -> str:
    return f"{source_path}.temp"


def _capture(e: Exception, input_path: str, index: int, threshold):
    with sentry_sdk.new_scope() as scope:
        scope.set_tag("operation", "sweep")
        scope.fingerprint = ["sweep-failure", type(e).__name__]
        scope.set_context(
            "sweep",
            {"source": Path(input_path).name, "frame": index, "threshold": threshold},
        )
        sentry_sdk.capture_exception(e, scope=scope)


def run_sweep(
    input_path: str,
    output_dir: str | None = None,
    thresholds: Iterable[float] | None = None,
    params: dict | None = None,
    *,
    workers: int | None = None,
    job: SweepJob | None = None,
) -> list[str]:
    """Sort ``input_path`` once per threshold and write every frame.

    Args:
        input_path: Source image.
        output_dir: Frame directory, created if missing
                    (default ``<input_path>.temp``).
        thresholds: Threshold values in frame order (default 0..255).
        params:     Other sorter parameters (axis, key, reverse, mode, upper).
        workers:    Thread count for each sort.
        job:        Optional job that receives progress and may be cancelled.

    Returns:
        Paths of the written frames, in frame order.

    Raises:
        InvalidThreshold:  Any threshold out of range (or above ``upper`` in
                           interval mode), before anything is written.
        UnsupportedFormat: Source not decodable.
        IOFailure:         Reading the source, creating the frame directory
                           or writing a frame failed.
    """
    job = job if job is not None else SweepJob()
    values = list(DEFAULT_THRESHOLDS if thresholds is None else thresholds)
    out_dir = Path(output_dir or default_output_dir(input_path))

    with job._lock:
        job.status = SweepStatus.RUNNING
        job.total_frames = len(values)
        job.current_frame = 0
        job.output_dir = str(out_dir)
        job.frames = []

    index, threshold = 0, None
    try:
        base = pixelsort.validate_params(
            {k: v for k, v in (params or {}).items() if k != "threshold"}
        )
        for threshold in values:
            pixelsort.resolve_bounds(
                threshold, base["key"], base["mode"], base["upper"]
            )
        threshold = None

        frame = decode(input_path)
        try:
            out_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise IOFailure(f"Cannot create frame directory {out_dir}: {e}") from e
        logger.info(
            "Sweeping %s over %d thresholds into %s", input_path, len(values), out_dir
        )

        for index, threshold in enumerate(values):
            if job._cancel_event.is_set():
                with job._lock:
                    job.status = SweepStatus.CANCELLED
                logger.info("Sweep cancelled after %d frames", index)
                return list(job.frames)

            output = pixelsort.apply(
                frame, {**base, "threshold": threshold}, workers=workers
            )
            path = str(out_dir / frame_name(index, input_path))
            encode(output, path)

            with job._lock:
                job.frames.append(path)
                job.current_frame = index + 1

        with job._lock:
            job.status = SweepStatus.COMPLETE
        return list(job.frames)

    except Exception as e:
        _capture(e, input_path, index, threshold)
        logger.error(
            "Sweep failed on frame %d (threshold %s): %s",
            index,
            threshold,
            type(e).__name__,
        )
        with job._lock:
            job.status = SweepStatus.ERROR
            job.error = f"Sweep failed: {type(e).__name__}: {e}"
        raise


class SweepManager:
    """Runs sweeps on a background thread. One sweep at a time."""

    def __init__(self):
        self._job: SweepJob | None = None

    @property
    def job(self) -> SweepJob | None:
        return self._job

    def start(
        self,
        input_path: str,
        output_dir: str | None = None,
        thresholds: Iterable[float] | None = None,
        params: dict | None = None,
        *,
        workers: int | None = None,
    ) -> SweepJob:
        """Start a background sweep. Returns the job for status tracking.

        Raises:
            RuntimeError: If a sweep is already running.
        """
        if self._job is not None and self._job.status == SweepStatus.RUNNING:
            raise RuntimeError("Sweep already in progress")

        job = SweepJob(status=SweepStatus.RUNNING)
        self._job = job

        thread = threading.Thread(
            target=self._run,
            args=(job, input_path, output_dir, thresholds, params, workers),
            daemon=True,
        )
        job._thread = thread
        thread.start()
        return job

    def _run(self, job, input_path, output_dir, thresholds, params, workers):
        try:
            run_sweep(
                input_path,
                output_dir,
                thresholds,
                params,
                workers=workers,
                job=job,
            )
        except Exception:
            # run_sweep already reported and recorded the failure on the job
            logger.debug("Background sweep ended with an error", exc_info=True)

    def get_status(self) -> dict:
        """Return serializable status dict."""
        if self._job is None:
            return {
                "status": SweepStatus.IDLE.value,
                "progress": 0.0,
                "current_frame": 0,
                "total_frames": 0,
            }
        with self._job._lock:
            return {
                "status": self._job.status.value,
                "progress": round(self._job.progress, 4),
                "current_frame": self._job.current_frame,
                "total_frames": self._job.total_frames,
                "output_dir": self._job.output_dir,
                "error": self._job.error,
            }

    def cancel(self) -> bool:
        """Cancel the running sweep. Returns True if a job was cancelled."""
        if self._job is None:
            return False
        with self._job._lock:
            if self._job.status == SweepStatus.RUNNING:
                self._job.cancel()
                return True
        return False

    def wait(self, timeout: float | None = None) -> SweepJob | None:
        """Block until the current sweep's thread finishes."""
        if self._job is not None and self._job._thread is not None:
            self._job._thread.join(timeout)
        return self._job
