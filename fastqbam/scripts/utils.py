#!/usr/bin/env python3
# fastqbam/scripts/utils.py

import importlib.resources as pkg_resources
import json
import logging
import os
import shlex
import shutil
import signal
import subprocess
import sys
import threading
from pathlib import Path


def run_command(command, log_file, critical=False, timeout=None):
    """
    Helper function to run a shell command and log its output.

    Args:
        command (str): The command to run.
        log_file (str): The path to the log file where stdout and stderr will be logged.
        critical (bool): If True, a failing command raises instead of returning False.
        timeout (float, optional): Seconds after which the command is killed.
            None (the default) waits indefinitely.

    Returns:
        bool: True if the command succeeded, False otherwise.

    Raises:
        RuntimeError: If the command fails or times out and critical is True.
    """
    logging.debug(f"Running command: {command}")
    timed_out = threading.Event()
    with open(log_file, "w") as lf:
        process = subprocess.Popen(
            command,
            shell=True,
            executable="/bin/bash",  # Ensure Bash is used for pipefail and pipelines
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            start_new_session=True,
        )

        timer = None
        if timeout:

            def _kill():
                timed_out.set()
                # Kill the whole process group so piped children release stdout
                try:
                    os.killpg(process.pid, signal.SIGKILL)
                except ProcessLookupError:
                    pass

            timer = threading.Timer(timeout, _kill)
            timer.start()

        try:
            for line in process.stdout:
                decoded_line = line.decode(errors="replace")
                lf.write(decoded_line)
                logging.debug(decoded_line.strip())
            process.wait()
        finally:
            if timer is not None:
                timer.cancel()

    if timed_out.is_set():
        logging.error(f"Command timed out after {timeout} seconds: {command}")
        if critical:
            raise RuntimeError(f"Command timed out after {timeout} seconds: {command}")
        return False

    if process.returncode != 0:
        logging.debug(f"Command failed with exit status {process.returncode}: {command}")
        if critical:
            raise RuntimeError(f"Critical command failed (exit status {process.returncode}): {command}")
        return False
    return True


def read_log_tail(log_file, lines=5):
    """Return the last lines of a command log, or an empty string if unreadable."""
    try:
        with open(log_file, "r", errors="replace") as lf:
            return "".join(lf.readlines()[-lines:]).strip()
    except OSError:
        return ""


def setup_logging(log_level=logging.INFO, log_file=None):
    """
    Sets up logging for the application.

    Args:
        log_level (int): Logging level (e.g., logging.INFO).
        log_file (str, optional): Path to a log file. If None, logs are printed to console.
    """
    logger = logging.getLogger()
    logger.setLevel(log_level)

    # Clear existing handlers so we don't duplicate logs
    if logger.hasHandlers():
        logger.handlers.clear()

    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)


def load_config(config_path=None):
    """
    Load the configuration file with fallback to the default package config.

    Args:
        config_path (str or Path or None): Path to the user-provided config file.

    Returns:
        dict: The loaded configuration dictionary.
    """
    if config_path is not None and os.path.exists(config_path):
        try:
            with open(config_path, "r", encoding="utf-8") as config_file:
                config = json.load(config_file)
                logging.info(f"Configuration loaded from {config_path}")
                return config
        except json.JSONDecodeError as e:
            logging.error(f"Error decoding JSON from the config file: {e}")
            raise

    if config_path is not None:
        logging.warning(f"Config file {config_path} not found, using the packaged default.")

    try:
        with pkg_resources.files("fastqbam").joinpath("config.json").open("r", encoding="utf-8") as f:
            config = json.load(f)
            logging.debug("Loaded default config from package data.")
            return config
    except (OSError, json.JSONDecodeError) as e:
        logging.error("Error: Default config file not found in package data.")
        logging.error(e)
        sys.exit(1)


def get_tool_param(config, key, fallback=None):
    """Return config['tool_params'][key] or the fallback."""
    return config.get("tool_params", {}).get(key, fallback)


def list_files_with_extensions(directory, extensions):
    """
    List regular files directly inside a directory whose names end with one of
    the given extensions.

    Args:
        directory (str or Path): Directory to scan (not recursive).
        extensions (iterable of str): Accepted filename suffixes, e.g. (".fastq", ".fq").

    Returns:
        list of Path: Matching files sorted lexicographically by filename.
    """
    directory = Path(directory)
    if not directory.is_dir():
        return []
    extensions = tuple(extensions)
    return sorted(
        (entry for entry in directory.iterdir() if entry.is_file() and entry.name.endswith(extensions)),
        key=lambda entry: entry.name,
    )


def strip_extension(filename, extensions):
    """Remove the first matching extension from a filename."""
    for ext in sorted(extensions, key=len, reverse=True):
        if filename.endswith(ext):
            return filename[: -len(ext)]
    return filename


def log_progress(current, total, label="Progress", width=50):
    """
    Log a text progress bar for (current, total).

    Args:
        current (int): Number of completed items.
        total (int): Total number of items.
        label (str): Text shown before the bar.
        width (int): Width of the bar in characters.
    """
    if total <= 0:
        return
    percentage = current * 100 // total
    completed = width * current // total
    bar = "=" * completed + " " * (width - completed)
    logging.info(f"{label}: [{bar}] {percentage}% ({current}/{total})")


def check_executable_available(executable: str) -> bool:
    """
    Check if an executable is available in the system PATH.

    Args:
        executable (str): Name or path of the executable to check.

    Returns:
        bool: True if executable is available, False otherwise.
    """
    location = shutil.which(executable)
    if location:
        logging.debug(f"Found executable: {executable} at {location}")
        return True
    logging.debug(f"Executable not found: {executable}")
    return False


def check_dependencies(config):
    """
    Verify that every configured external tool can be found.

    Args:
        config (dict): Configuration dictionary with a 'tools' section.

    Raises:
        RuntimeError: If one or more tools are missing.
    """
    missing = [
        f"{tool} ({executable})"
        for tool, executable in config.get("tools", {}).items()
        if not check_executable_available(shlex.split(executable)[0])
    ]
    if missing:
        for tool in missing:
            logging.error(f"{tool} is required but not installed.")
        raise RuntimeError(f"Missing required tools: {', '.join(missing)}")
    logging.info("All dependencies found.")


def get_tool_version(command, version_flag="--version"):
    """
    Runs a command to get the version of a tool and returns the parsed version string.

    Args:
        command (str): The command to run (e.g., "samtools").
        version_flag (str): The flag to pass to the command to get its version.

    Returns:
        str: The parsed version string or 'unknown' if parsing fails.
    """
    try:
        full_command = shlex.split(command) + shlex.split(version_flag)
        result = subprocess.run(full_command, capture_output=True, text=True)
        output = result.stdout.strip() or result.stderr.strip()
        if not output:
            return "unknown"

        first_line = output.split("\n")[0]
        # "samtools 1.19" vs. minimap2's bare "2.26-r1175"
        if "samtools" in first_line:
            return first_line.split(" ")[1]
        return first_line.split(" ")[0]

    except FileNotFoundError:
        logging.error(f"Command not found: {command}")
        return "unknown"
    except PermissionError:
        logging.error(f"Permission denied: {command}")
        return "unknown"
    except IndexError as e:
        logging.error(f"Failed to parse version for {command}: {e}")
        return "unknown"


def get_tool_versions(config):
    """
    Retrieves the versions of the tools specified in the config.

    Args:
        config (dict): The configuration dictionary.

    Returns:
        dict: Tool names mapped to their version strings.
    """
    return {tool: get_tool_version(command) for tool, command in config.get("tools", {}).items()}
