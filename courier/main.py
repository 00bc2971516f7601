#!/usr/bin/env python3
"""
Report Courier - Main Application
Integrates all components for production use

This is the main entry point that wires the directory feed, the task
registry, the metrics sidecar and the status endpoint together.
"""

import logging
import signal
import sys
import threading
import time

from courier.cloudwatch_manager import CloudWatchManager
from courier.config_manager import (
    DEFAULT_METRICS_NAMESPACE,
    DEFAULT_METRICS_REGION,
    DEFAULT_PUBLISH_INTERVAL_SECONDS,
    DEFAULT_SCAN_INTERVAL_SECONDS,
    DEFAULT_STATUS_HOST,
    DEFAULT_STATUS_PORT,
    ConfigManager,
)
from courier.directory_feed import DirectoryFeed
from courier.file_worker import FileWorker, ProcessingContext
from courier.status_server import StatusServer
from courier.task_registry import TaskRegistry

logger = logging.getLogger(__name__)

SHUTDOWN_GRACE_SECONDS = 5


class CourierSystem:
    """
    Main system coordinator for Report Courier.

    Architecture:
    1. Scan loop lists the watch directory every scan interval
       (or earlier, when the filesystem observer sees a new file)
    2. Every accepted file is offered to the task registry
    3. The registry starts one FileWorker per new filename
    4. Metrics loop publishes registry size and worker events
    5. Status endpoint serves the registry snapshot

    Example:
        >>> system = CourierSystem('/etc/report-courier/config.yaml')
        >>> system.start()
        >>> # ... system runs ...
        >>> system.stop()

    Attributes:
        config (ConfigManager): Configuration manager
        context (ProcessingContext): Settings captured by every worker
        registry (TaskRegistry): In-flight file tracking
        feed (DirectoryFeed): Directory listing source
        cloudwatch (CloudWatchManager): Event sink and metrics publisher
    """

    def __init__(self, config_path: str, verbose: bool = None):
        """
        Initialize the courier.

        Args:
            config_path: Path to configuration file
            verbose: Overrides the config's verbose flag when not None

        Raises:
            FileNotFoundError: If config file doesn't exist
            ConfigValidationError: If config is invalid
        """
        logger.info("Initializing Report Courier...")

        self.config = ConfigManager(config_path)
        self.context = ProcessingContext.from_config(self.config, verbose=verbose)

        self.cloudwatch = CloudWatchManager(
            region=self.config.get("monitoring.region", DEFAULT_METRICS_REGION),
            enabled=self.config.get("monitoring.cloudwatch_enabled", False),
            namespace=self.config.get("monitoring.namespace", DEFAULT_METRICS_NAMESPACE),
        )

        self.feed = DirectoryFeed(
            directory=self.context.directory,
            patterns=self.config.get("watch.patterns", ".xml"),
            separator=self.context.separator,
            use_events=self.config.get("watch.use_filesystem_events", True),
        )

        self.registry = TaskRegistry(self._new_worker, events=self.cloudwatch)

        self.status_server = None
        if self.config.get("status.enabled", True):
            self.status_server = StatusServer(
                self.registry,
                host=self.config.get("status.host", DEFAULT_STATUS_HOST),
                port=self.config.get("status.port", DEFAULT_STATUS_PORT),
            )

        self.scan_interval = self.config.get(
            "watch.scan_interval_seconds", DEFAULT_SCAN_INTERVAL_SECONDS
        )
        self.publish_interval = self.config.get(
            "monitoring.publish_interval_seconds", DEFAULT_PUBLISH_INTERVAL_SECONDS
        )

        self._running = False
        self._stop_event = threading.Event()
        self._scan_thread = None
        self._metrics_thread = None

        self._log_configuration()
        logger.info("Initialization complete")

    def _new_worker(self, name: str) -> FileWorker:
        return FileWorker(name, self.context, events=self.cloudwatch)

    def _log_configuration(self):
        """Log the effective configuration (token masked)."""
        ctx = self.context
        token = "***" if ctx.token else "(none)"

        logger.info("=" * 60)
        logger.info("Configuration:")
        logger.info(f"  Interval:      {self.scan_interval} seconds")
        logger.info(f"  Size check:    {ctx.stable_check_seconds} seconds")
        logger.info(f"  Retry check:   {ctx.check_interval_seconds} seconds")
        logger.info(f"  Directory:     {ctx.directory}")
        logger.info(f"  Output:        {ctx.output_directory}")
        logger.info(f"  Patterns:      {', '.join(ctx.patterns)}")
        logger.info(f"  URL:           {ctx.url}, Token: {token}")
        logger.info(f"  Timeout:       {ctx.timeout_seconds} seconds")
        logger.info(f"  Zip:           {ctx.archive}")
        logger.info(f"  Clear:         {ctx.clear}")
        logger.info(f"  Verbose:       {ctx.verbose}")
        logger.info("=" * 60)

    def start(self):
        """
        Start the system.

        Note:
            Safe to call multiple times - will not start if already running
        """
        if self._running:
            logger.warning("Already running")
            return

        logger.info("Starting Report Courier...")

        self.feed.start()
        if self.status_server is not None:
            self.status_server.start()

        self._running = True
        self._stop_event.clear()

        self._scan_thread = threading.Thread(target=self._scan_loop, name="scan-loop", daemon=True)
        self._scan_thread.start()

        self._metrics_thread = threading.Thread(
            target=self._metrics_loop, name="metrics-loop", daemon=True
        )
        self._metrics_thread.start()

        logger.info("System started successfully")

    def stop(self):
        """
        Stop the system gracefully.

        Stops scanning, metrics and the status endpoint. Workers still in
        flight get a short grace period; they cannot be cancelled.
        """
        if not self._running:
            return

        logger.info("Shutting down...")
        self._running = False
        self._stop_event.set()

        self.feed.stop()

        if self._scan_thread:
            self._scan_thread.join(timeout=SHUTDOWN_GRACE_SECONDS)
        if self._metrics_thread:
            self._metrics_thread.join(timeout=SHUTDOWN_GRACE_SECONDS)

        if self.status_server is not None:
            self.status_server.stop()

        if not self.registry.join(timeout=SHUTDOWN_GRACE_SECONDS):
            logger.warning(
                f"Abandoning {self.registry.size()} files still in work: "
                f"{', '.join(self.registry.files_in_work())}"
            )

        self.cloudwatch.publish_metrics(files_in_work=self.registry.size())
        logger.info("Shutdown complete")

    def scan_once(self) -> int:
        """
        Run one scan cycle.

        Replaces the directory snapshot and offers every accepted entry to
        the registry, in listing order.

        Returns:
            int: Number of workers admitted in this cycle
        """
        if self.context.verbose:
            logger.info("Scanning directory for new files")

        entries = self.feed.scan()
        self.registry.set_directory_listing(entries)

        admitted = 0
        for entry in entries:
            if not self.feed.accepts(entry):
                continue
            try:
                if self.registry.admit(entry.name):
                    admitted += 1
            except Exception as e:
                # Left untracked, so the next scan offers it again
                logger.error(f"Could not admit {entry.name}: {e}")

        return admitted

    def _scan_loop(self):
        logger.info("Scan loop started")

        while self._running:
            try:
                self.scan_once()
            except OSError as e:
                logger.error(f"Directory traverse error: {e}")

            if self.context.verbose:
                logger.info(f"Sleeping for {self.scan_interval} sec")
            self.feed.wait_for_change(self.scan_interval)

        logger.info("Scan loop stopped")

    def _metrics_loop(self):
        while not self._stop_event.wait(self.publish_interval):
            self.cloudwatch.publish_metrics(files_in_work=self.registry.size())


def signal_handler(signum, frame):
    """
    Handle shutdown signals (SIGTERM, SIGINT).

    SIGHUP is handled by ConfigManager (re-validation only).
    """
    logger.info(f"Received signal {signum}")
    if 'system' in globals():
        system.stop()
    sys.exit(0)


def main():
    """
    Main entry point for Report Courier.

    Command-line arguments:
        --config: Path to configuration file
        --test-config: Test configuration and exit
        --log-level: Logging level (DEBUG, INFO, WARNING, ERROR)
        -v/--verbose: Verbose per-file progress output
    """
    import argparse

    parser = argparse.ArgumentParser(description='Report Courier')
    parser.add_argument(
        '--config',
        default='/etc/report-courier/config.yaml',
        help='Path to configuration file'
    )
    parser.add_argument(
        '--test-config',
        action='store_true',
        help='Test configuration and exit'
    )
    parser.add_argument(
        '--log-level',
        default='INFO',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Logging level'
    )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Verbose output (overrides config)'
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s [%(name)s] [%(levelname)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    if args.test_config:
        try:
            config = ConfigManager(args.config)
            logger.info("Configuration valid!")
            logger.info(f"Directory: {config.get('watch.directory')}")
            logger.info(f"Upload URL: {config.get('upload.url')}")
            sys.exit(0)
        except Exception as e:
            logger.error(f"Configuration error: {e}")
            sys.exit(1)

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    global system

    try:
        system = CourierSystem(args.config, verbose=True if args.verbose else None)
        system.start()

        logger.info("Running... Press Ctrl+C to stop")
        while True:
            time.sleep(1)

    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
        system.stop()
    except Exception as e:
        logger.exception(f"FATAL ERROR: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
