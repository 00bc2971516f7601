#!/usr/bin/env python3
"""
CloudWatch Manager for Report Courier
Collects worker events and publishes them as metrics

One instance is created per process and handed explicitly to the
registry, workers and upload manager. Counters are updated from many
worker threads, so every mutation happens under a lock.
"""

import logging
import os
import socket
import threading
from datetime import datetime, timezone
from typing import Optional

import boto3

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = 'Courier/Upload'
METRIC_FILES_IN_WORK = 'FilesInWork'
METRIC_FILES_SENT = 'FilesSent'
METRIC_BYTES_SENT = 'BytesSent'
METRIC_SENDING_FAILURES = 'SendingFailures'
METRIC_TASKS_ADMITTED = 'TasksAdmitted'
METRIC_TASK_FAILURES = 'TaskFailures'


class CloudWatchManager:
    """
    Event sink for the courier core, backed by CloudWatch.

    Metrics Published:
    - FilesInWork (gauge, current registry size)
    - FilesSent / BytesSent (successful uploads since last publish)
    - SendingFailures (failed upload attempts since last publish)
    - TasksAdmitted / TaskFailures (worker lifecycle since last publish)

    Example:
        >>> cw = CloudWatchManager('us-east-1', enabled=False)
        >>> cw.record_task_admitted()
        >>> cw.record_upload_success(file_size=2048)
        >>> cw.publish_metrics(files_in_work=1)
    """

    def __init__(self, region: str, instance_id: Optional[str] = None,
                 enabled: bool = True, namespace: str = DEFAULT_NAMESPACE):
        """Initialize CloudWatch manager."""
        self.region = region
        self.instance_id = instance_id or socket.gethostname()
        self.enabled = enabled
        self.namespace = namespace
        self.cw_client = None

        self._lock = threading.Lock()
        self.files_sent = 0
        self.bytes_sent = 0
        self.sending_failures = 0
        self.tasks_admitted = 0
        self.task_failures = 0

        if self.enabled:
            try:
                endpoint_url = os.getenv('AWS_ENDPOINT_URL')

                if endpoint_url:
                    logger.info(f"CloudWatch in TEST mode (endpoint: {endpoint_url})")
                    self.cw_client = boto3.client(
                        'cloudwatch',
                        region_name=region,
                        endpoint_url=endpoint_url,
                        aws_access_key_id=os.getenv('AWS_ACCESS_KEY_ID', 'test'),
                        aws_secret_access_key=os.getenv('AWS_SECRET_ACCESS_KEY', 'test'),
                    )
                else:
                    self.cw_client = boto3.client('cloudwatch', region_name=region)
                logger.info(f"CloudWatch initialized for region: {region} (namespace: {namespace})")

            except Exception as e:
                logger.error(f"CloudWatch client creation failed: {e}")
                raise RuntimeError(f"CloudWatch initialization failed: {e}")
        else:
            logger.info("CloudWatch disabled (enabled=False)")

    def record_task_admitted(self):
        """Record a worker being admitted by the registry."""
        with self._lock:
            self.tasks_admitted += 1

    def record_upload_success(self, file_size: int):
        """Record a successful upload of file_size payload bytes."""
        with self._lock:
            self.files_sent += 1
            self.bytes_sent += file_size
        logger.debug(f"Recorded upload: {file_size} bytes")

    def record_upload_failure(self):
        """Record one failed upload attempt."""
        with self._lock:
            self.sending_failures += 1
        logger.debug("Recorded upload failure")

    def record_task_failure(self):
        """Record a worker that finished without processing its file."""
        with self._lock:
            self.task_failures += 1

    def publish_metrics(self, files_in_work: Optional[int] = None):
        """Publish accumulated metrics to CloudWatch and reset accumulators."""
        if not self.enabled:
            logger.debug("CloudWatch disabled, skipping publish")
            return

        if self.cw_client is None:
            logger.error("CloudWatch client not initialized, cannot publish metrics")
            return

        with self._lock:
            counters = [
                (METRIC_FILES_SENT, self.files_sent, 'Count'),
                (METRIC_BYTES_SENT, self.bytes_sent, 'Bytes'),
                (METRIC_SENDING_FAILURES, self.sending_failures, 'Count'),
                (METRIC_TASKS_ADMITTED, self.tasks_admitted, 'Count'),
                (METRIC_TASK_FAILURES, self.task_failures, 'Count'),
            ]
            self.files_sent = 0
            self.bytes_sent = 0
            self.sending_failures = 0
            self.tasks_admitted = 0
            self.task_failures = 0

        timestamp = datetime.now(timezone.utc)
        dimensions = [{'Name': 'Instance', 'Value': self.instance_id}]

        metrics = [
            {
                'MetricName': name,
                'Value': value,
                'Unit': unit,
                'Timestamp': timestamp,
                'Dimensions': dimensions,
            }
            for name, value, unit in counters
            if value > 0
        ]

        if files_in_work is not None:
            metrics.append({
                'MetricName': METRIC_FILES_IN_WORK,
                'Value': files_in_work,
                'Unit': 'Count',
                'Timestamp': timestamp,
                'Dimensions': dimensions,
            })

        if not metrics:
            return

        try:
            self.cw_client.put_metric_data(Namespace=self.namespace, MetricData=metrics)
            logger.debug(f"Published {len(metrics)} metrics to CloudWatch")
        except Exception as e:
            logger.error(f"Failed to publish CloudWatch metrics: {e}")
