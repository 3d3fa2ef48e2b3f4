#!/usr/bin/env python3
"""
fastqbam/scripts/resource_tracker.py

Run-scoped registry of transient files and directories.

Every stage registers the intermediate paths it creates (decompressed FASTQ
files, SAM/BAM staging directories) with a single ResourceTracker owned by
the pipeline run. The tracker is the only component that deletes them, once,
when the run scope ends:

    with ResourceTracker() as tracker:
        run_pipeline(run_config, config, tracker=tracker)

Only paths created by the pipeline itself may be registered, since cleanup
deletes them without further checks.
"""

import logging
import shutil
import threading
from pathlib import Path

FILE = "file"
DIRECTORY = "directory"


class ResourceTracker:
    """Records transient paths and removes them exactly once."""

    def __init__(self):
        self._resources = []
        self._lock = threading.Lock()
        self._cleaned = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.cleanup()
        return False

    @property
    def resources(self):
        """Snapshot of registered (kind, path) tuples in registration order."""
        with self._lock:
            return list(self._resources)

    @property
    def cleaned(self):
        return self._cleaned

    def register(self, kind, path):
        """
        Record a path for removal at cleanup.

        Args:
            kind (str): FILE or DIRECTORY.
            path (str or Path): Path created by the pipeline.

        Raises:
            ValueError: If kind is not FILE or DIRECTORY.
        """
        if kind not in (FILE, DIRECTORY):
            raise ValueError(f"Unknown resource kind: {kind}")
        path = Path(path)
        with self._lock:
            if (kind, path) in self._resources:
                return
            self._resources.append((kind, path))
        logging.debug(f"Registered transient {kind}: {path}")

    def register_file(self, path):
        self.register(FILE, path)

    def register_directory(self, path):
        self.register(DIRECTORY, path)

    def is_registered(self, path):
        path = Path(path)
        with self._lock:
            return any(registered == path for _, registered in self._resources)

    def discard(self, path):
        """
        Remove a registered file right away, e.g. a partial output of a failed
        step. The path stays registered, so cleanup skips it as missing.

        Raises:
            ValueError: If the path was never registered.
        """
        path = Path(path)
        if not self.is_registered(path):
            raise ValueError(f"Refusing to remove unregistered path: {path}")
        try:
            if path.is_file():
                path.unlink()
                logging.debug(f"Discarded partial output: {path}")
        except OSError as e:
            logging.warning(f"Could not remove partial output {path}: {e}")

    def make_directory(self, path, fresh=False):
        """
        Create a directory (with parents) and register each level that did not
        exist before. Pre-existing directories are left untracked.

        Args:
            path (str or Path): Directory to create.
            fresh (bool): Remove a leftover directory at path first. Only for
                staging locations owned by the pipeline.

        Returns:
            Path: The directory path.
        """
        path = Path(path)
        if fresh and path.is_dir() and not self.is_registered(path):
            logging.warning(f"Removing leftover staging directory from a previous run: {path}")
            shutil.rmtree(path)

        missing = []
        current = path
        while not current.exists():
            missing.append(current)
            if current.parent == current:
                break
            current = current.parent

        path.mkdir(parents=True, exist_ok=True)
        # Outermost first so cleanup removes the top of the created subtree first
        for directory in reversed(missing):
            logging.info(f"Created directory: {directory}")
            self.register_directory(directory)
        return path

    def cleanup(self):
        """
        Remove every registered path in registration order. Runs once; later
        calls do nothing. Missing paths are skipped and removal failures are
        logged as warnings.
        """
        with self._lock:
            if self._cleaned:
                return
            self._cleaned = True
            resources = list(self._resources)

        logging.info("Cleaning up temporary files")
        files = [path for kind, path in resources if kind == FILE]
        directories = [path for kind, path in resources if kind == DIRECTORY]
        if not files:
            logging.info("No decompressed FASTQ files to remove.")
        if not directories:
            logging.info("No temporary directories to remove.")

        for kind, path in resources:
            try:
                if kind == DIRECTORY:
                    if path.is_dir():
                        shutil.rmtree(path)
                        logging.debug(f"Removed temporary directory: {path}")
                elif path.is_file() or path.is_symlink():
                    path.unlink()
                    logging.debug(f"Removed temporary file: {path}")
            except OSError as e:
                logging.warning(f"Could not remove {kind} {path}: {e}")

        logging.info("Cleanup complete!")
