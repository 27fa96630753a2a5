"""
Calibration Session

Owns the run state of one magnetometer calibration:

    IDLE -> COLLECTING -> FITTING -> COMPLETE | FAILED

Samples arrive synchronously from the sensor transport and are appended to a
SampleBuffer. Once the collection window elapses the buffer is frozen and the
batch fit runs on a worker thread, so the thread delivering samples is never
blocked. The worker is the only writer of the result; readers go through the
session lock.

Usage:
    session = CalibrationSession(CalibrationConfig(reference_field_strength=50.0))
    session.start()
    for timestamp, reading in stream:
        session.add_sample(reading, timestamp)
        if session.state is not RunState.COLLECTING:
            break
    transform = session.wait()
"""

import logging
import threading
import time
import numpy as np
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from enum import Enum
from typing import Callable, List, Optional

from .calibration import CalibrationTransform, calibrate
from .config import CalibrationConfig
from .errors import CalibrationError, FailureReason, SessionBusyError
from .ransac import RandomSource

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    """Calibration run state."""
    IDLE = "idle"
    COLLECTING = "collecting"
    FITTING = "fitting"
    COMPLETE = "complete"
    FAILED = "failed"


class SampleBuffer:
    """
    Append-only sample store with skip and throttle gating.

    A reading is accepted only if `skip` readings have been passed over since
    the last accepted one, at least `throttle` seconds separate it from the
    last accepted one, and it differs from the previous reading.
    """

    def __init__(self, skip: int = 0, throttle: float = 0.0):
        self.skip = skip
        self.throttle = throttle
        self._samples: List[np.ndarray] = []
        self._skipped = skip  # Accept the first reading
        self._last_time: Optional[float] = None
        self._previous: Optional[np.ndarray] = None
        self._frozen = False

    def __len__(self) -> int:
        return len(self._samples)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def offer(self, sample, timestamp: float) -> bool:
        """Offer one reading; returns True if it was stored."""
        if self._frozen:
            raise RuntimeError("sample buffer is frozen")

        measurement = np.array(sample, dtype=float).reshape(3)
        previous = self._previous
        self._previous = measurement

        if self._skipped < self.skip:
            self._skipped += 1
            return False
        if self._last_time is not None and timestamp - self._last_time < self.throttle:
            return False
        if previous is not None and np.array_equal(measurement, previous):
            return False
        if not np.all(np.isfinite(measurement)):
            return False

        measurement.setflags(write=False)
        self._samples.append(measurement)
        self._skipped = 0
        self._last_time = timestamp
        return True

    def freeze(self) -> np.ndarray:
        """Stop accepting samples and return them as a read-only (N, 3) array."""
        self._frozen = True
        data = np.array(self._samples, dtype=float).reshape(-1, 3)
        data.setflags(write=False)
        return data


class CalibrationSession:
    """
    State machine for one calibration at a time.

    Only one run is active: start() discards a run that is still collecting
    and refuses to start while a fit is in progress. A failed run leaves the
    previous transform in place.
    """

    def __init__(self,
                 config: Optional[CalibrationConfig] = None,
                 executor: Optional[Executor] = None,
                 clock: Callable[[], float] = time.monotonic,
                 rng: RandomSource = None,
                 publisher: Optional[Callable[[CalibrationTransform], object]] = None):
        """
        Initialize the session.

        Args:
            config: Calibration options. If None, uses defaults.
            executor: Runs the batch fit. If None, a private single-worker
                thread pool is created and shut down by close().
            clock: Time source used when add_sample gets no timestamp
            rng: Generator or seed for RANSAC subset sampling
            publisher: Called with each new transform, e.g. to set firmware parameters
        """
        self.config = config or CalibrationConfig()
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=1,
                                                        thread_name_prefix='magcal-fit')
        self._clock = clock
        self._rng = np.random.default_rng(rng)
        self._publisher = publisher

        self._lock = threading.Lock()
        self._done = threading.Condition(self._lock)
        self._state = RunState.IDLE
        self._buffer: Optional[SampleBuffer] = None
        self._start_time: Optional[float] = None
        self._run_id = 0
        self._cancel = threading.Event()
        self._closed = False

        self._transform: Optional[CalibrationTransform] = None
        self._failure: Optional[CalibrationError] = None
        self._last_result = None

    # -------------------------------------------------------------------------
    # Read-only accessors
    # -------------------------------------------------------------------------

    @property
    def state(self) -> RunState:
        with self._lock:
            return self._state

    @property
    def transform(self) -> Optional[CalibrationTransform]:
        """Most recent successful transform (survives later failures)."""
        with self._lock:
            return self._transform

    @property
    def failure(self) -> Optional[CalibrationError]:
        """Error of the latest run if it failed."""
        with self._lock:
            return self._failure

    @property
    def failure_reason(self) -> Optional[FailureReason]:
        with self._lock:
            return self._failure.reason if self._failure is not None else None

    @property
    def result(self):
        """CalibrationResult of the latest successful run (with diagnostics)."""
        with self._lock:
            return self._last_result

    @property
    def sample_count(self) -> int:
        with self._lock:
            return len(self._buffer) if self._buffer is not None else 0

    def is_calibrating(self) -> bool:
        return self.state in (RunState.COLLECTING, RunState.FITTING)

    # -------------------------------------------------------------------------
    # Run control
    # -------------------------------------------------------------------------

    def start(self):
        """Begin a new collection, discarding any run still collecting."""
        with self._lock:
            if self._closed:
                raise RuntimeError("calibration session is closed")
            if self._state is RunState.FITTING:
                raise SessionBusyError("cannot start a calibration while fitting")
            if self._state is RunState.COLLECTING:
                logger.info("Restarting calibration, discarding %d samples", len(self._buffer))

            self._run_id += 1
            self._buffer = SampleBuffer(self.config.measurement_skip,
                                        self.config.measurement_throttle)
            self._start_time = None
            self._failure = None
            self._cancel = threading.Event()
            self._state = RunState.COLLECTING

        logger.info("Magnetometer calibration started, collecting for %g seconds",
                    self.config.collection_duration)

    def add_sample(self, sample, timestamp: Optional[float] = None) -> bool:
        """
        Ingest one magnetometer reading.

        Returns:
            True if the reading was stored in the buffer
        """
        if timestamp is None:
            timestamp = self._clock()

        with self._lock:
            if self._state is not RunState.COLLECTING:
                return False

            if self._deadline_passed_locked(timestamp):
                job = self._freeze_locked()
            else:
                job = None
                accepted = self._buffer.offer(sample, timestamp)
                if accepted and self._start_time is None:
                    self._start_time = timestamp
                    logger.warning("Calibrating magnetometer, rotate the sensor through all "
                                   "orientations for %g seconds", self.config.collection_duration)

        if job is not None:
            self._submit(*job)
            return False
        return accepted

    def tick(self, timestamp: Optional[float] = None) -> RunState:
        """Check the collection deadline without a new sample."""
        if timestamp is None:
            timestamp = self._clock()

        with self._lock:
            job = None
            if self._state is RunState.COLLECTING and self._deadline_passed_locked(timestamp):
                job = self._freeze_locked()

        if job is not None:
            self._submit(*job)
        return self.state

    def finish(self) -> Future:
        """Stop collecting now and start fitting."""
        with self._lock:
            if self._state is not RunState.COLLECTING:
                raise RuntimeError(f"no collection in progress (state {self._state.value})")
            job = self._freeze_locked()
        return self._submit(*job)

    def cancel(self):
        """
        Abandon the current run.

        A collecting run returns to IDLE with its samples discarded. A run
        that is fitting stops at the next RANSAC iteration and ends FAILED.
        """
        with self._lock:
            if self._state is RunState.COLLECTING:
                self._run_id += 1
                self._buffer = None
                self._start_time = None
                self._state = RunState.IDLE
                logger.info("Calibration cancelled during collection")
            elif self._state is RunState.FITTING:
                self._cancel.set()
                logger.info("Cancelling calibration fit")

    def wait(self, timeout: Optional[float] = None) -> CalibrationTransform:
        """
        Block until the current run leaves FITTING.

        Returns:
            The new transform

        Raises:
            CalibrationError: the run failed
            TimeoutError: still fitting after timeout seconds
            RuntimeError: no run has been fitted
        """
        with self._done:
            if not self._done.wait_for(lambda: self._state is not RunState.FITTING, timeout):
                raise TimeoutError("calibration still fitting")
            if self._state is RunState.FAILED:
                raise self._failure
            if self._state is not RunState.COMPLETE:
                raise RuntimeError(f"no finished calibration (state {self._state.value})")
            return self._transform

    def close(self):
        """Refuse new runs and shut down the private executor."""
        self.cancel()
        with self._lock:
            self._closed = True
        if self._owns_executor:
            self._executor.shutdown(wait=True)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    # -------------------------------------------------------------------------
    # Fitting
    # -------------------------------------------------------------------------

    def _deadline_passed_locked(self, timestamp: float) -> bool:
        if self._start_time is None:
            return False
        if timestamp - self._start_time < self.config.collection_duration:
            return False
        logger.warning("Calibration time reached")
        return True

    def _freeze_locked(self):
        samples = self._buffer.freeze()
        self._state = RunState.FITTING
        logger.info("Collected %d measurements", len(samples))
        return self._run_id, samples, self._cancel

    def _submit(self, run_id: int, samples: np.ndarray, cancel: threading.Event) -> Future:
        # Submitted outside the lock so an inline executor cannot deadlock
        return self._executor.submit(self._fit, run_id, samples, cancel)

    def _fit(self, run_id: int, samples: np.ndarray, cancel: threading.Event):
        try:
            result = calibrate(samples, self.config, rng=self._rng, should_stop=cancel.is_set)
        except CalibrationError as e:
            logger.error("Magnetometer calibration failed (%s): %s", e.reason.value, e)
            self._finish(run_id, failure=e)
            return None
        except Exception as e:
            logger.exception("Magnetometer calibration failed unexpectedly")
            self._finish(run_id, failure=CalibrationError(f"unexpected error: {e}"))
            raise

        if self._finish(run_id, result=result) and self._publisher is not None:
            try:
                self._publisher(result.transform)
            except Exception:
                logger.exception("Failed to publish calibration")
        return result.transform

    def _finish(self, run_id: int, result=None, failure: Optional[CalibrationError] = None) -> bool:
        with self._done:
            if run_id != self._run_id or self._state is not RunState.FITTING:
                logger.info("Discarding result of superseded calibration run")
                return False

            if failure is not None:
                self._failure = failure
                self._state = RunState.FAILED
            else:
                self._transform = result.transform
                self._last_result = result
                self._failure = None
                self._state = RunState.COMPLETE
                logger.info("Magnetometer calibration complete: %d/%d inliers",
                            result.inlier_count, len(result.inlier_mask))
            self._done.notify_all()
            return True
