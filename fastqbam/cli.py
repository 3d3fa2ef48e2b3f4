#!/usr/bin/env python3
# fastqbam/cli.py
# fastqbam CLI entry point

import argparse
import logging
import signal
import sys
from pathlib import Path

from fastqbam.scripts.pipeline import RunConfig, list_projects, run_pipeline
from fastqbam.scripts.resource_tracker import ResourceTracker
from fastqbam.scripts.summary import has_failures
from fastqbam.scripts.utils import load_config, setup_logging
from fastqbam.version import __version__ as VERSION

EXIT_PARTIAL_FAILURE = 3


def positive_int(value):
    """argparse type for a strictly positive integer."""
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid positive integer: {value!r}")
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be a positive integer, got {number}")
    return number


def positive_float(value):
    """argparse type for a strictly positive number of seconds."""
    try:
        number = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid number of seconds: {value!r}")
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be positive, got {number}")
    return number


def prompt_project_name(available):
    """Ask on stdin which project directory to process."""
    print("Available project directories:")
    for name in available:
        print(f"  {name}")
    return input("Enter the project directory to process: ")


def build_parser():
    parser = argparse.ArgumentParser(
        prog="fastqbam",
        description=(
            "FASTQ to BAM Processing Pipeline: aligns the FASTQ files of every barcode "
            "directory with minimap2 and merges them into one sorted, duplicate-marked, "
            "indexed BAM file with samtools."
        ),
        epilog="Note: This tool requires minimap2 and samtools to be installed.",
    )
    parser.add_argument(
        "-b",
        "--base-dir",
        type=Path,
        default=None,
        help="Directory containing the project directories (default: ./IGVTesting).",
    )
    selection = parser.add_mutually_exclusive_group()
    selection.add_argument("-s", "--subfolder", type=str, help="Process a specific project directory.")
    selection.add_argument("-a", "--all", action="store_true", help="Process all project directories.")
    selection.add_argument(
        "-i",
        "--interactive",
        action="store_true",
        help="Choose the project directory to process from a prompt.",
    )
    parser.add_argument(
        "-t", "--threads", type=positive_int, default=None, help="Number of threads to use (default: 8)."
    )
    parser.add_argument("-r", "--reference", type=Path, default=None, help="Override default reference path.")
    parser.add_argument(
        "--timeout",
        type=positive_float,
        default=None,
        help="Seconds allowed for each minimap2/samtools invocation (default: no limit).",
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help=f"Exit with status {EXIT_PARTIAL_FAILURE} when any project was skipped or any barcode failed.",
    )
    parser.add_argument(
        "--summary-file",
        type=Path,
        default=None,
        help="Write a JSON run summary to this path (and a TSV table next to it).",
    )
    parser.add_argument(
        "-l",
        "--log-level",
        help="Set the logging level (e.g., DEBUG, INFO, WARNING, ERROR)",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
    )
    parser.add_argument("-f", "--log-file", help="Set the log output file (default is stdout)")
    parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {VERSION}")
    parser.add_argument(
        "--config-path",
        type=Path,
        default=None,
        help="Path to the configuration file (config.json). If not provided, the default config will be used.",
    )
    return parser


def _raise_system_exit(signum, frame):
    # Turn SIGTERM into SystemExit so the run's cleanup scope unwinds
    sys.exit(128 + signum)


def main(argv=None):
    """
    Parse arguments, set up logging and run the pipeline.

    Returns:
        int: Process exit status.
    """
    parser = build_parser()
    if argv is None:
        argv = sys.argv[1:]
    if not argv:
        parser.print_help()
        return 1

    args = parser.parse_args(argv)

    try:
        config = load_config(args.config_path)
    except (OSError, ValueError) as exc:
        logging.critical(f"Failed to load configuration: {exc}")
        return 1

    def get_conf(key, fallback):
        return config.get("default_values", {}).get(key, fallback)

    cli_defaults = config.get("cli_defaults", {})
    log_level_name = args.log_level or cli_defaults.get("log_level", "INFO")
    log_level_value = getattr(logging, log_level_name.upper(), logging.INFO)
    log_file_value = args.log_file or cli_defaults.get("log_file")
    if log_file_value:
        Path(log_file_value).parent.mkdir(parents=True, exist_ok=True)
    setup_logging(log_level=log_level_value, log_file=log_file_value)

    threads = args.threads if args.threads is not None else get_conf("threads", 8)
    timeout = args.timeout if args.timeout is not None else get_conf("timeout", None)
    run_config = RunConfig(
        base_dir=args.base_dir if args.base_dir is not None else Path(get_conf("base_dir", "./IGVTesting")),
        project=args.subfolder,
        process_all=args.all,
        threads=threads,
        reference=args.reference,
        timeout=timeout,
        interactive=args.interactive,
    )

    signal.signal(signal.SIGTERM, _raise_system_exit)
    input_provider = prompt_project_name if args.interactive else None

    with ResourceTracker() as tracker:
        try:
            summary = run_pipeline(
                run_config,
                config,
                tracker=tracker,
                input_provider=input_provider,
                summary_path=args.summary_file,
            )
        except (ValueError, FileNotFoundError, RuntimeError) as exc:
            logging.error(f"Error: {exc}")
            if run_config.base_dir and Path(run_config.base_dir).is_dir() and args.subfolder:
                available = ", ".join(entry.name for entry in list_projects(run_config.base_dir))
                logging.info(f"Available project directories: {available or 'none'}")
            return 1
        except KeyboardInterrupt:
            logging.error("Interrupted, temporary files are being removed.")
            return 130

    if args.strict and has_failures(summary):
        return EXIT_PARTIAL_FAILURE
    return 0


if __name__ == "__main__":
    sys.exit(main())
