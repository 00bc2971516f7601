#!/usr/bin/env python3
"""
File Worker for Report Courier
Runs one file through stabilization, validation, upload and cleanup

States, in order, with no backward transitions:
    DISCOVERED -> WAITING_STABLE -> VALIDATING -> UPLOADING
               -> ARCHIVING -> CLEANUP -> DONE

A worker never terminates the process. Any failure stops the state
machine, is logged with the filename and reported to the event sink,
and is returned to the registry as a failed WorkerResult.
"""

import logging
import os
import time
import zipfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple

from courier.config_manager import (
    DEFAULT_BACKOFF_UNIT_SECONDS,
    DEFAULT_CHECK_INTERVAL_SECONDS,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MIN_SIZE_BYTES,
    DEFAULT_PATTERNS,
    DEFAULT_READ_TIMEOUT_SECONDS,
    DEFAULT_SEPARATOR,
    DEFAULT_STABLE_CHECK_SECONDS,
    DEFAULT_TIMEOUT_SECONDS,
)
from courier.upload_manager import UploadManager
from courier.utils import format_bytes, is_well_formed_markup, split_patterns

logger = logging.getLogger(__name__)

# Polling rounds between "still waiting" warnings in the unbounded loops
STALL_WARNING_CHECKS = 20


class WorkerState(Enum):
    DISCOVERED = "discovered"
    WAITING_STABLE = "waiting_stable"
    VALIDATING = "validating"
    UPLOADING = "uploading"
    ARCHIVING = "archiving"
    CLEANUP = "cleanup"
    DONE = "done"


class StabilizationTimeout(Exception):
    """Raised when a file is still growing after max_stable_checks."""

    pass


class ValidationTimeout(Exception):
    """Raised when a file is still invalid after max_validation_attempts."""

    pass


@dataclass(frozen=True)
class ProcessingContext:
    """
    Immutable per-worker configuration, captured when the worker is spawned.

    max_stable_checks and max_validation_attempts of None mean the
    corresponding polling loop never gives up.
    """

    directory: str
    output_directory: str
    url: str
    token: str = ""
    patterns: Tuple[str, ...] = (DEFAULT_PATTERNS,)
    separator: str = DEFAULT_SEPARATOR
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    read_timeout_seconds: Optional[float] = DEFAULT_READ_TIMEOUT_SECONDS
    stable_check_seconds: float = DEFAULT_STABLE_CHECK_SECONDS
    check_interval_seconds: float = DEFAULT_CHECK_INTERVAL_SECONDS
    min_size_bytes: int = DEFAULT_MIN_SIZE_BYTES
    max_stable_checks: Optional[int] = None
    max_validation_attempts: Optional[int] = None
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff_unit_seconds: float = DEFAULT_BACKOFF_UNIT_SECONDS
    archive: bool = False
    clear: bool = True
    verbose: bool = False

    @classmethod
    def from_config(cls, config, verbose: Optional[bool] = None) -> "ProcessingContext":
        """Build a context from a loaded ConfigManager."""
        directory = config.get("watch.directory")
        separator = config.get("watch.separator", DEFAULT_SEPARATOR)
        patterns = split_patterns(config.get("watch.patterns", DEFAULT_PATTERNS), separator)

        return cls(
            directory=directory,
            output_directory=config.get("watch.output_directory", directory),
            url=config.get("upload.url"),
            token=config.get("upload.token", ""),
            patterns=tuple(patterns),
            separator=separator,
            timeout_seconds=config.get("upload.timeout_seconds", DEFAULT_TIMEOUT_SECONDS),
            read_timeout_seconds=config.get(
                "upload.read_timeout_seconds", DEFAULT_READ_TIMEOUT_SECONDS
            ),
            stable_check_seconds=config.get(
                "processing.stable_check_seconds", DEFAULT_STABLE_CHECK_SECONDS
            ),
            check_interval_seconds=config.get(
                "processing.check_interval_seconds", DEFAULT_CHECK_INTERVAL_SECONDS
            ),
            min_size_bytes=config.get("processing.min_size_bytes", DEFAULT_MIN_SIZE_BYTES),
            max_stable_checks=config.get("processing.max_stable_checks"),
            max_validation_attempts=config.get("processing.max_validation_attempts"),
            max_attempts=config.get("upload.max_attempts", DEFAULT_MAX_ATTEMPTS),
            backoff_unit_seconds=config.get(
                "upload.backoff_unit_seconds", DEFAULT_BACKOFF_UNIT_SECONDS
            ),
            archive=config.get("post_processing.archive", False),
            clear=config.get("post_processing.clear", True),
            verbose=config.get("verbose", False) if verbose is None else verbose,
        )


@dataclass
class WorkerResult:
    """Outcome of one worker run, delivered through the completion signal."""

    name: str
    success: bool
    state: WorkerState
    attempts: int = 0
    error: Optional[str] = None


class FileWorker:
    """
    Processes a single file from discovery to cleanup.

    Example:
        >>> worker = FileWorker('report.xml', context, events=cw)
        >>> result = worker.run()
        >>> result.success
        True

    Attributes:
        name (str): Filename relative to the watch directory
        path (Path): Full path of the source file
        state (WorkerState): Current state of the state machine
    """

    def __init__(self, name: str, context: ProcessingContext, events=None,
                 uploader: Optional[UploadManager] = None):
        self.name = name
        self.context = context
        self.events = events
        self.path = Path(context.directory) / name
        self.prefix = f"[FILE: {name}] "
        self.state = WorkerState.DISCOVERED
        self.uploader = uploader or UploadManager(
            url=context.url,
            token=context.token,
            connect_timeout=context.timeout_seconds,
            read_timeout=context.read_timeout_seconds,
            max_attempts=context.max_attempts,
            backoff_unit_seconds=context.backoff_unit_seconds,
            events=events,
            log_prefix=self.prefix,
        )

    def run(self) -> WorkerResult:
        """
        Drive the state machine to completion.

        Returns:
            WorkerResult: success, the last state entered and upload attempts
        """
        logger.info(f"{self.prefix}Found new file, start processing {self.path}")
        attempts = 0

        try:
            self._enter(WorkerState.WAITING_STABLE)
            self.wait_until_stable()

            self._enter(WorkerState.VALIDATING)
            payload = self.wait_until_valid()

            self._enter(WorkerState.UPLOADING)
            attempts = self.uploader.upload(payload, self.name)

            if self.context.archive:
                self._enter(WorkerState.ARCHIVING)
                zip_path = self.archive(payload)
                logger.info(f"{self.prefix}Zipped file to: {zip_path}")

            if self.context.clear or self.context.archive:
                self._enter(WorkerState.CLEANUP)
                self.path.unlink()
                logger.info(f"{self.prefix}Deleted file {self.path}")

        except Exception as e:
            logger.error(f"{self.prefix}Processing failed while {self.state.value}: {e}")
            if self.events is not None:
                self.events.record_task_failure()
            return WorkerResult(
                name=self.name,
                success=False,
                state=self.state,
                attempts=getattr(e, "attempts", attempts),
                error=str(e),
            )

        self._enter(WorkerState.DONE)
        return WorkerResult(name=self.name, success=True, state=self.state, attempts=attempts)

    def wait_until_stable(self) -> int:
        """
        Block until two consecutive size checks agree.

        Returns:
            int: The stable file size in bytes

        Raises:
            StabilizationTimeout: If max_stable_checks is set and exceeded
            OSError: If the file cannot be stat'ed
        """
        previous = None
        checks = 0

        while True:
            size = self._stat_size()
            checks += 1
            self._verbose(f"Size is {size} bytes")

            if size == previous:
                self._verbose("Size is stabilized, validating")
                return size

            limit = self.context.max_stable_checks
            if limit is not None and checks >= limit:
                raise StabilizationTimeout(
                    f"File size still changing after {checks} checks (last: {size} bytes)"
                )
            if checks % STALL_WARNING_CHECKS == 0:
                logger.warning(
                    f"{self.prefix}Still waiting for size to settle after {checks} checks "
                    f"(last: {size} bytes)"
                )

            previous = size
            time.sleep(self.context.stable_check_seconds)

    def wait_until_valid(self) -> bytes:
        """
        Re-read the file until it is large enough and well-formed.

        Returns:
            bytes: The validated payload

        Raises:
            ValidationTimeout: If max_validation_attempts is set and exceeded
            OSError: If the file cannot be read
        """
        attempts = 0

        while True:
            payload = self.path.read_bytes()
            attempts += 1

            if len(payload) < self.context.min_size_bytes:
                reason = f"File is too small, skipping it for now, size: {len(payload)}"
            elif not is_well_formed_markup(payload):
                reason = "Error parsing XML, content is not well-formed"
            else:
                self._verbose(f"Validated {format_bytes(len(payload))}")
                return payload

            self._verbose(reason)

            limit = self.context.max_validation_attempts
            if limit is not None and attempts >= limit:
                raise ValidationTimeout(f"{reason} (gave up after {attempts} attempts)")
            if attempts % STALL_WARNING_CHECKS == 0:
                logger.warning(f"{self.prefix}Still invalid after {attempts} attempts: {reason}")

            time.sleep(self.context.check_interval_seconds)

    def archive(self, payload: bytes) -> Path:
        """
        Write payload as the single entry of <output_directory>/<name>.zip.

        Returns:
            Path: The archive path
        """
        out_dir = Path(self.context.output_directory)
        out_dir.mkdir(parents=True, exist_ok=True)
        zip_path = out_dir / f"{self.name}.zip"

        with zipfile.ZipFile(zip_path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            archive.writestr(self.name, payload)

        return zip_path

    def _stat_size(self) -> int:
        return os.stat(self.path).st_size

    def _enter(self, state: WorkerState):
        logger.debug(f"{self.prefix}{self.state.value} -> {state.value}")
        self.state = state

    def _verbose(self, message: str):
        if self.context.verbose:
            logger.info(f"{self.prefix}{message}")
        else:
            logger.debug(f"{self.prefix}{message}")
