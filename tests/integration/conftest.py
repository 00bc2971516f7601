# tests/integration/conftest.py
"""
Fixtures for integration tests (mocked collector)
These tests verify components work together with a mocked HTTP endpoint
"""

from unittest.mock import Mock, patch

import pytest
import yaml


@pytest.fixture
def collector():
    """
    Mock collector endpoint.

    Set `collector.statuses` to a list of status codes to return in order;
    the last one repeats.
    """
    class Collector:
        def __init__(self):
            self.statuses = [200]
            self.requests = []

        def post(self, url, data=None, headers=None, timeout=None):
            self.requests.append({"url": url, "data": data, "headers": headers})
            index = min(len(self.requests), len(self.statuses)) - 1
            return Mock(status_code=self.statuses[index])

    fake = Collector()
    with patch("courier.upload_manager.requests.Session") as mock_Session:
        mock_Session.return_value.__enter__.return_value = fake
        yield fake


@pytest.fixture
def config_file(temp_dir, drop_dir):
    """Config with scaled-down intervals, no status server, no CloudWatch"""
    config = {
        "watch": {
            "directory": str(drop_dir),
            "output_directory": str(temp_dir / "archive"),
            "patterns": ".xml",
            "scan_interval_seconds": 0.1,
            "use_filesystem_events": False,
        },
        "processing": {
            "stable_check_seconds": 0.05,
            "check_interval_seconds": 0.05,
        },
        "upload": {
            "url": "http://collector.test/reports",
            "token": "secret-token",
            "backoff_unit_seconds": 0.01,
        },
        "post_processing": {"archive": True, "clear": True},
        "status": {"enabled": False},
        "monitoring": {"cloudwatch_enabled": False, "publish_interval_seconds": 0.1},
    }
    path = temp_dir / "config.yaml"
    path.write_text(yaml.safe_dump(config))
    return str(path)
