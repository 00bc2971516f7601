#!/usr/bin/env python3
"""
Upload Manager for Report Courier
Posts validated reports to the collector with retry logic

The payload is minified, gzip-compressed and POSTed with the access token
and original filename in headers. Any transport error or status other
than 200 counts as a failed attempt; attempts are retried with an
exponential backoff of 2, 4, 8, 16, 32 backoff units.
"""

import logging
import time
from typing import Optional

import requests

from courier.config_manager import DEFAULT_BACKOFF_UNIT_SECONDS, DEFAULT_MAX_ATTEMPTS
from courier.utils import format_bytes, gzip_bytes, minify_markup

logger = logging.getLogger(__name__)

HEADER_ACCESS_TOKEN = "X-Access-Token"
HEADER_FILE_NAME = "X-File-Name"


class UploadError(Exception):
    """
    Raised when upload fails after all attempts.

    This exception indicates that the collector could not accept the file
    even after the maximum number of attempts.
    """

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


class UploadAttemptError(Exception):
    """Raised for a single failed POST (transport error or non-200 status)."""

    pass


class UploadManager:
    """
    Manages report uploads to the collector with retry logic.

    Features:
    - Markup minification and gzip compression
    - Separate connect and read timeouts
    - Exponential backoff retry (2, 4, 8, 16, 32 units; 6 attempts total)

    Example:
        >>> uploader = UploadManager(url='http://collector:3000/', token='secret')
        >>> attempts = uploader.upload(payload, 'report.xml')

    Attributes:
        url (str): Collector endpoint
        max_attempts (int): Total number of POST attempts
        backoff_unit_seconds (float): Length of one backoff unit
    """

    def __init__(self, url: str, token: str = "",
                 connect_timeout: float = 10,
                 read_timeout: Optional[float] = 300,
                 max_attempts: int = DEFAULT_MAX_ATTEMPTS,
                 backoff_unit_seconds: float = DEFAULT_BACKOFF_UNIT_SECONDS,
                 events=None,
                 log_prefix: str = ""):
        """
        Initialize upload manager.

        Args:
            url: Collector endpoint URL
            token: Value for the access-token header
            connect_timeout: Seconds to wait for the TCP connection
            read_timeout: Seconds to wait for the response (None waits forever)
            max_attempts: Total POST attempts before giving up
            backoff_unit_seconds: Seconds per backoff unit
            events: Event sink (CloudWatchManager) or None
            log_prefix: Prefix for log lines, e.g. "[FILE: a.xml] "
        """
        self.url = url
        self.token = token
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.max_attempts = max_attempts
        self.backoff_unit_seconds = backoff_unit_seconds
        self.events = events
        self.log_prefix = log_prefix

    def upload(self, payload: bytes, filename: str) -> int:
        """
        Upload payload with retry logic.

        Args:
            payload: Raw validated report bytes
            filename: Original filename, sent in the X-File-Name header

        Returns:
            int: Number of attempts it took (1 on first-try success)

        Raises:
            UploadError: When every attempt failed
        """
        body = self.prepare_body(payload)
        attempt = 0

        while True:
            logger.info(f"{self.log_prefix}Sending data to API, try {attempt + 1}")

            try:
                self._post(body, filename)
            except UploadAttemptError as e:
                attempt += 1
                logger.warning(f"{self.log_prefix}Error sending to API: {e}")
                if self.events is not None:
                    self.events.record_upload_failure()

                if attempt >= self.max_attempts:
                    logger.error(f"{self.log_prefix}Max attempts exceeded ({attempt})")
                    raise UploadError(f"Unable to send data to API: {e}", attempts=attempt)

                delay = self._calculate_backoff(attempt)
                logger.info(f"{self.log_prefix}Backing off for {delay} seconds")
                time.sleep(delay)
                continue

            attempt += 1
            if self.events is not None:
                self.events.record_upload_success(len(payload))
            logger.info(
                f"{self.log_prefix}Successfully sent {format_bytes(len(body))} to API "
                f"(attempt {attempt})"
            )
            return attempt

    def prepare_body(self, payload: bytes) -> bytes:
        """Minify and gzip the payload into a request body."""
        return gzip_bytes(minify_markup(payload))

    def _calculate_backoff(self, attempt: int) -> float:
        """Backoff after the given failed attempt: 2^attempt units."""
        return (2 ** attempt) * self.backoff_unit_seconds

    def _post(self, body: bytes, filename: str) -> None:
        """
        Perform a single POST.

        Raises:
            UploadAttemptError: On transport error or any status other than 200
        """
        headers = {
            HEADER_ACCESS_TOKEN: self.token,
            HEADER_FILE_NAME: filename,
            "Content-Encoding": "gzip",
        }

        try:
            with requests.Session() as session:
                response = session.post(
                    self.url,
                    data=body,
                    headers=headers,
                    timeout=(self.connect_timeout, self.read_timeout),
                )
        except requests.exceptions.RequestException as e:
            raise UploadAttemptError(str(e)) from e

        if response.status_code != requests.codes.ok:
            raise UploadAttemptError(f"Http status: {response.status_code}")
