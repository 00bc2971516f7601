#!/usr/bin/env python3
"""
Directory Feed for Report Courier
Lists the watch directory once per scan tick

The feed only reports what is in the directory; deciding whether a file
is new belongs to the task registry. A watchdog observer can wake the
scan loop as soon as a file is created or moved in, instead of waiting
for the full scan interval.
"""

import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from courier.utils import matches_suffix, split_patterns

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DirectoryEntry:
    """One entry of a directory listing."""

    name: str
    is_dir: bool
    size: int


class DirectoryFeed:
    """
    Produces directory snapshots and filters them by suffix.

    Example:
        >>> feed = DirectoryFeed('/var/spool/reports', '.xml,.XML')
        >>> entries = feed.scan()
        >>> ready = [e for e in entries if feed.accepts(e)]

    Attributes:
        directory (Path): Directory being scanned
        suffixes (List[str]): Accepted filename suffixes
    """

    def __init__(self, directory: str, patterns: str = ".xml", separator: str = ",",
                 use_events: bool = True):
        """
        Initialize directory feed.

        Args:
            directory: Directory to scan
            patterns: Accepted suffixes joined by separator
            separator: Separator used in patterns
            use_events: Start a watchdog observer to wake the scan loop early
        """
        self.directory = Path(directory)
        self.suffixes = split_patterns(patterns, separator)
        self.use_events = use_events

        self._wake = threading.Event()
        self.observer: Optional[Observer] = None
        self.handler = NewFileHandler(self._wake)

        logger.info(f"Watching {self.directory} for suffixes: {', '.join(self.suffixes)}")

    def start(self):
        """
        Create the directory if missing and start the observer (if enabled).
        """
        if not self.directory.exists():
            logger.warning(f"Directory does not exist: {self.directory}")
            logger.info(f"Creating directory: {self.directory}")
            self.directory.mkdir(parents=True, exist_ok=True)

        if self.use_events and self.observer is None:
            self.observer = Observer()
            self.observer.schedule(self.handler, str(self.directory), recursive=False)
            self.observer.start()
            logger.info("Filesystem event observer started")

    def stop(self):
        """Stop the observer and release any waiter."""
        if self.observer is not None:
            self.observer.stop()
            self.observer.join()
            self.observer = None
            logger.info("Filesystem event observer stopped")
        self._wake.set()

    def scan(self) -> List[DirectoryEntry]:
        """
        List the directory.

        Returns:
            List[DirectoryEntry]: All entries, sorted by name

        Raises:
            OSError: If the directory cannot be listed
        """
        entries = []
        with os.scandir(self.directory) as it:
            for item in it:
                try:
                    is_dir = item.is_dir()
                    size = 0 if is_dir else item.stat().st_size
                except FileNotFoundError:
                    # Removed between listing and stat
                    continue
                entries.append(DirectoryEntry(name=item.name, is_dir=is_dir, size=size))

        entries.sort(key=lambda e: e.name)
        return entries

    def accepts(self, entry: DirectoryEntry) -> bool:
        """True for non-directory entries whose name has an accepted suffix."""
        if entry.is_dir:
            logger.debug(f"Path {entry.name} is directory, skipping")
            return False

        if not matches_suffix(entry.name, self.suffixes):
            logger.debug(f"File {entry.name} is not accepted by system")
            return False

        return True

    def wait_for_change(self, timeout: float) -> bool:
        """
        Sleep until the next scan is due.

        Returns:
            bool: True if woken early by a filesystem event (or stop())
        """
        woken = self._wake.wait(timeout)
        self._wake.clear()
        return woken


class NewFileHandler(FileSystemEventHandler):
    """
    Watchdog event handler that sets a wake event.

    Only file creations and moves into the directory are interesting;
    modifications of a file already in work are handled by its worker.
    """

    def __init__(self, wake: threading.Event):
        self.wake = wake

    def on_created(self, event):
        if not event.is_directory:
            self.wake.set()

    def on_moved(self, event):
        if not event.is_directory:
            self.wake.set()
