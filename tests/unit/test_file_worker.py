#!/usr/bin/env python3
"""
Tests for the per-file processing state machine
"""

import dataclasses
import logging
import zipfile
from pathlib import Path
from unittest.mock import Mock, call, patch

import pytest

from courier.file_worker import (
    STALL_WARNING_CHECKS,
    FileWorker,
    StabilizationTimeout,
    ValidationTimeout,
    WorkerState,
)
from courier.upload_manager import UploadError


@pytest.fixture
def uploader():
    mock = Mock()
    mock.upload.return_value = 1
    return mock


def make_worker(context, uploader, name="report.xml", events=None, **overrides):
    if overrides:
        context = dataclasses.replace(context, **overrides)
    return FileWorker(name, context, events=events, uploader=uploader)


# ============================================
# STABILIZATION
# ============================================


class TestStabilization:
    """Test size-stability detection"""

    @patch("courier.file_worker.time.sleep")
    def test_stable_after_one_comparison(self, mock_sleep, context, uploader):
        worker = make_worker(context, uploader)

        with patch.object(worker, "_stat_size", side_effect=[10, 10]):
            assert worker.wait_until_stable() == 10

        assert mock_sleep.call_args_list == [call(15)]

    @patch("courier.file_worker.time.sleep")
    def test_growing_file_needs_extra_cycle(self, mock_sleep, context, uploader):
        worker = make_worker(context, uploader)

        with patch.object(worker, "_stat_size", side_effect=[10, 20, 20]):
            assert worker.wait_until_stable() == 20

        assert mock_sleep.call_args_list == [call(15), call(15)]

    @patch("courier.file_worker.time.sleep")
    def test_empty_file_still_needs_two_checks(self, mock_sleep, context, uploader):
        worker = make_worker(context, uploader)

        with patch.object(worker, "_stat_size", side_effect=[0, 0]):
            assert worker.wait_until_stable() == 0

        assert mock_sleep.call_count == 1

    @patch("courier.file_worker.time.sleep")
    def test_stabilization_limit(self, mock_sleep, context, uploader):
        worker = make_worker(context, uploader, max_stable_checks=3)

        with patch.object(worker, "_stat_size", side_effect=[1, 2, 3, 4]):
            with pytest.raises(StabilizationTimeout):
                worker.wait_until_stable()

        assert mock_sleep.call_count == 2

    @patch("courier.file_worker.time.sleep")
    def test_long_stabilization_logs_warning(self, mock_sleep, context, uploader, caplog):
        worker = make_worker(context, uploader)
        sizes = list(range(1, STALL_WARNING_CHECKS + 1)) + [STALL_WARNING_CHECKS]

        with caplog.at_level(logging.WARNING, logger="courier.file_worker"):
            with patch.object(worker, "_stat_size", side_effect=sizes):
                assert worker.wait_until_stable() == STALL_WARNING_CHECKS

        warnings = [r.getMessage() for r in caplog.records if r.levelno == logging.WARNING]
        assert warnings == [
            f"[FILE: report.xml] Still waiting for size to settle after "
            f"{STALL_WARNING_CHECKS} checks (last: {STALL_WARNING_CHECKS} bytes)"
        ]

    def test_missing_file_raises(self, context, uploader):
        worker = make_worker(context, uploader, name="gone.xml")

        with pytest.raises(FileNotFoundError):
            worker.wait_until_stable()


# ============================================
# VALIDATION
# ============================================


class TestValidation:
    """Test minimum size and well-formedness checks"""

    def test_valid_content_passes_without_wait(self, context, uploader, drop_dir, report_bytes):
        (drop_dir / "report.xml").write_bytes(report_bytes)
        worker = make_worker(context, uploader)

        with patch("courier.file_worker.time.sleep") as mock_sleep:
            assert worker.wait_until_valid() == report_bytes

        mock_sleep.assert_not_called()

    @pytest.mark.parametrize(
        "initial",
        [
            b"<a/>",  # below 50 bytes
            b"<Transactions><Tx>" + b"1" * 60,  # large enough, not well-formed
        ],
    )
    def test_invalid_content_retried(self, context, uploader, drop_dir, report_bytes, initial):
        path = drop_dir / "report.xml"
        path.write_bytes(initial)
        worker = make_worker(context, uploader)

        def writer_finishes(_seconds):
            path.write_bytes(report_bytes)

        with patch("courier.file_worker.time.sleep", side_effect=writer_finishes) as mock_sleep:
            assert worker.wait_until_valid() == report_bytes

        assert mock_sleep.call_args_list == [call(180)]

    def test_exactly_minimum_size_accepted(self, context, uploader, drop_dir):
        payload = b"<r>" + b"x" * 43 + b"</r>"
        assert len(payload) == 50
        (drop_dir / "report.xml").write_bytes(payload)

        assert make_worker(context, uploader).wait_until_valid() == payload

    def test_long_validation_logs_warning(self, context, uploader, drop_dir, report_bytes, caplog):
        path = drop_dir / "report.xml"
        path.write_bytes(b"<tiny/>")
        worker = make_worker(context, uploader)
        waits = []

        def writer_finishes_late(seconds):
            waits.append(seconds)
            if len(waits) == STALL_WARNING_CHECKS:
                path.write_bytes(report_bytes)

        with caplog.at_level(logging.WARNING, logger="courier.file_worker"):
            with patch("courier.file_worker.time.sleep", side_effect=writer_finishes_late):
                assert worker.wait_until_valid() == report_bytes

        warnings = [r.getMessage() for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 1
        assert f"Still invalid after {STALL_WARNING_CHECKS} attempts" in warnings[0]
        assert "too small" in warnings[0]

    @patch("courier.file_worker.time.sleep")
    def test_validation_limit(self, mock_sleep, context, uploader, drop_dir):
        (drop_dir / "report.xml").write_bytes(b"<tiny/>")
        worker = make_worker(context, uploader, max_validation_attempts=2)

        with pytest.raises(ValidationTimeout, match="too small"):
            worker.wait_until_valid()

        assert mock_sleep.call_count == 1


# ============================================
# FULL RUN
# ============================================


class TestRun:
    """Test the complete state machine"""

    @patch("courier.file_worker.time.sleep")
    def test_archive_and_delete(self, mock_sleep, context, uploader, drop_dir, report_bytes):
        source = drop_dir / "report.xml"
        source.write_bytes(report_bytes)
        uploader.upload.return_value = 3
        worker = make_worker(context, uploader, archive=True)

        result = worker.run()

        assert result.success is True
        assert result.state == WorkerState.DONE
        assert result.attempts == 3
        uploader.upload.assert_called_once_with(report_bytes, "report.xml")
        assert not source.exists()

        zip_path = Path(context.output_directory) / "report.xml.zip"
        with zipfile.ZipFile(zip_path) as archive:
            assert archive.namelist() == ["report.xml"]
            assert archive.read("report.xml") == report_bytes

    @patch("courier.file_worker.time.sleep")
    def test_clear_without_archive(self, mock_sleep, context, uploader, drop_dir, report_bytes):
        source = drop_dir / "report.xml"
        source.write_bytes(report_bytes)

        result = make_worker(context, uploader).run()

        assert result.success is True
        assert not source.exists()
        assert not Path(context.output_directory).exists()

    @patch("courier.file_worker.time.sleep")
    def test_keep_source_when_no_policy(self, mock_sleep, context, uploader, drop_dir, report_bytes):
        source = drop_dir / "report.xml"
        source.write_bytes(report_bytes)

        result = make_worker(context, uploader, clear=False, archive=False).run()

        assert result.success is True
        assert source.exists()

    @patch("courier.file_worker.time.sleep")
    def test_archive_implies_delete(self, mock_sleep, context, uploader, drop_dir, report_bytes):
        source = drop_dir / "report.xml"
        source.write_bytes(report_bytes)

        make_worker(context, uploader, clear=False, archive=True).run()

        assert not source.exists()
        assert (Path(context.output_directory) / "report.xml.zip").exists()

    @patch("courier.file_worker.time.sleep")
    def test_upload_failure_is_task_local(self, mock_sleep, context, uploader, drop_dir, report_bytes):
        source = drop_dir / "report.xml"
        source.write_bytes(report_bytes)
        uploader.upload.side_effect = UploadError("Unable to send data to API", attempts=6)
        events = Mock()

        result = make_worker(context, uploader, events=events, archive=True).run()

        assert result.success is False
        assert result.state == WorkerState.UPLOADING
        assert result.attempts == 6
        assert "Unable to send" in result.error
        assert source.exists()
        assert not Path(context.output_directory).exists()
        events.record_task_failure.assert_called_once()

    def test_vanished_file_fails_in_waiting_stable(self, context, uploader):
        result = make_worker(context, uploader, name="missing.xml").run()

        assert result.success is False
        assert result.state == WorkerState.WAITING_STABLE
        uploader.upload.assert_not_called()

    @patch("courier.file_worker.time.sleep")
    def test_archive_failure_keeps_source(self, mock_sleep, context, uploader, drop_dir, report_bytes, temp_dir):
        source = drop_dir / "report.xml"
        source.write_bytes(report_bytes)
        blocker = temp_dir / "not-a-dir"
        blocker.write_text("file in the way")

        result = make_worker(context, uploader, archive=True, output_directory=str(blocker)).run()

        assert result.success is False
        assert result.state == WorkerState.ARCHIVING
        assert source.exists()

    def test_default_uploader_built_from_context(self, context):
        worker = FileWorker("report.xml", context)

        assert worker.uploader.url == context.url
        assert worker.uploader.connect_timeout == context.timeout_seconds
        assert worker.uploader.max_attempts == 6
        assert worker.uploader.log_prefix == "[FILE: report.xml] "
