#!/usr/bin/env python3
# fastqbam/scripts/pipeline.py

import fnmatch
import logging
import os
import timeit
from enum import Enum
from pathlib import Path
from typing import Callable, List, NamedTuple, Optional

from fastqbam.scripts.alignment_processing import align_fastq_files
from fastqbam.scripts.archive_processing import expand_archives
from fastqbam.scripts.bam_processing import (
    consolidate_sam_files,
    merge_bam_files,
    summarize_bam,
)
from fastqbam.scripts.resource_tracker import ResourceTracker
from fastqbam.scripts.summary import (
    convert_summary_to_tsv,
    end_summary,
    has_failures,
    record_project,
    start_summary,
    write_summary,
)
from fastqbam.scripts.utils import check_dependencies, get_tool_param, get_tool_versions
from fastqbam.version import __version__ as VERSION


class RunConfig(NamedTuple):
    """Parameters of one pipeline run. Exactly one project selection mode is active."""

    base_dir: Path
    project: Optional[str] = None
    process_all: bool = False
    threads: int = 8
    reference: Optional[Path] = None
    timeout: Optional[float] = None
    interactive: bool = False


class BarcodeState(Enum):
    DISCOVERED = "discovered"
    EXPANDING = "expanding"
    ALIGNING = "aligning"
    CONSOLIDATING = "consolidating"
    MERGING = "merging"
    DONE = "done"
    FAILED = "failed"


def validate_run_config(run_config: RunConfig) -> None:
    """
    Check a RunConfig before any project is touched.

    Raises:
        ValueError: On conflicting or missing project selection, or invalid threads/timeout.
        FileNotFoundError: If the base directory does not exist.
    """
    modes = sum([bool(run_config.project), bool(run_config.process_all), bool(run_config.interactive)])
    if modes > 1:
        raise ValueError("Options -s|--subfolder, -a|--all and -i|--interactive cannot be used together.")
    if modes == 0:
        raise ValueError("Either -s|--subfolder or -a|--all must be specified.")

    threads = run_config.threads
    if isinstance(threads, bool) or not isinstance(threads, int) or threads <= 0:
        raise ValueError(f"Thread count must be a positive integer, got {threads!r}.")

    if run_config.timeout is not None and run_config.timeout <= 0:
        raise ValueError(f"Timeout must be a positive number of seconds, got {run_config.timeout!r}.")

    if not Path(run_config.base_dir).is_dir():
        raise FileNotFoundError(f"Base directory '{run_config.base_dir}' does not exist")


def staging_directories(project_dir, barcode_name, config):
    """
    Return the (temp_sam, temp_bam, final_bam) directories of one barcode.
    Each barcode gets its own subdirectory so staging trees never overlap.
    """
    data_dir = Path(project_dir) / get_tool_param(config, "data_dir", "data")
    return (
        data_dir / get_tool_param(config, "temp_sam_dir", "temp_sam") / barcode_name,
        data_dir / get_tool_param(config, "temp_bam_dir", "temp_bam") / barcode_name,
        data_dir / get_tool_param(config, "final_bam_dir", "final_bam") / barcode_name,
    )


def process_barcode(barcode_dir, project_dir, reference, threads, config, tracker, timeout=None):
    """
    Run one barcode directory through expansion, alignment, consolidation and merge.

    Failures are recorded in the returned outcome instead of being raised, so
    sibling barcodes still run.

    Args:
        barcode_dir (Path): Barcode directory holding the raw reads.
        project_dir (Path): Project directory the barcode belongs to.
        reference (Path): Reference genome FASTA.
        threads (int): Threads passed to every external tool.
        config (dict): Configuration dictionary.
        tracker (ResourceTracker): Registry for transient paths.
        timeout (float, optional): Seconds allowed per external tool invocation.

    Returns:
        dict: Outcome with keys barcode, state, failed_state, error, fastq_count,
            bam_count, merged_bam, mapped and unmapped.
    """
    barcode_dir = Path(barcode_dir)
    project_dir = Path(project_dir)
    temp_sam_dir, temp_bam_dir, final_bam_dir = staging_directories(project_dir, barcode_dir.name, config)

    logging.info(f"=== Processing barcode directory: {barcode_dir.name} in project: {project_dir.name} ===")
    outcome = {
        "barcode": barcode_dir.name,
        "path": str(barcode_dir),
        "state": BarcodeState.DISCOVERED.value,
        "failed_state": None,
        "error": None,
        "fastq_count": 0,
        "bam_count": 0,
        "merged_bam": None,
        "mapped": None,
        "unmapped": None,
    }
    start = timeit.default_timer()
    state = BarcodeState.DISCOVERED

    try:
        for staging_dir in (temp_sam_dir, temp_bam_dir):
            tracker.make_directory(staging_dir, fresh=True)
        final_bam_dir.mkdir(parents=True, exist_ok=True)

        state = BarcodeState.EXPANDING
        logging.info("=== Decompressing FASTQ files... ===")
        expand_archives(barcode_dir, tracker, config)

        state = BarcodeState.ALIGNING
        logging.info("=== Processing FASTQ files with minimap2... ===")
        sam_files = align_fastq_files(
            barcode_dir, reference, temp_sam_dir, threads, config, tracker, timeout=timeout
        )
        outcome["fastq_count"] = len(sam_files)

        state = BarcodeState.CONSOLIDATING
        logging.info("=== Converting SAM to BAM with additional processing... ===")
        bam_files = consolidate_sam_files(temp_sam_dir, temp_bam_dir, threads, config, tracker, timeout=timeout)
        outcome["bam_count"] = len(bam_files)

        if not bam_files:
            raise RuntimeError(f"No finalized BAM files for barcode {barcode_dir.name}; nothing to merge")

        state = BarcodeState.MERGING
        logging.info("=== Merging BAM files... ===")
        merged_bam = merge_bam_files(temp_bam_dir, final_bam_dir, threads, config, tracker, timeout=timeout)
        outcome["merged_bam"] = merged_bam
        outcome.update(summarize_bam(merged_bam))

        state = BarcodeState.DONE
    except (RuntimeError, OSError) as e:
        logging.error(f"Barcode {barcode_dir.name} failed while {state.value}: {e}")
        outcome["failed_state"] = state.value
        outcome["error"] = str(e)
        state = BarcodeState.FAILED

    outcome["state"] = state.value
    outcome["runtime_seconds"] = round(timeit.default_timer() - start, 2)
    if state == BarcodeState.DONE:
        logging.info(f"Completed processing barcode directory: {barcode_dir}")
    return outcome


def resolve_reference(project_dir, reference_override=None, config=None):
    """
    Determine the reference genome for a project.

    Args:
        project_dir (Path): Project directory.
        reference_override (Path, optional): Reference used instead of the project default.
        config (dict, optional): Configuration with 'tool_params.default_reference'.

    Returns:
        Path: An existing, readable reference file.

    Raises:
        FileNotFoundError: If the reference does not exist or cannot be read.
    """
    if reference_override:
        reference = Path(reference_override)
    else:
        default_reference = get_tool_param(config or {}, "default_reference", "errorCorrection/reference.fasta")
        reference = Path(project_dir) / default_reference
        logging.info(f"Using default reference path: {reference}")

    if not reference.is_file() or not os.access(reference, os.R_OK):
        raise FileNotFoundError(
            f"Reference genome file '{reference}' does not exist for project {Path(project_dir).name}"
        )
    return reference


def discover_barcodes(project_dir, config=None) -> List[Path]:
    """
    List the barcode directories of a project: immediate subdirectories of its
    data directory whose name matches the configured pattern, sorted by name.
    """
    config = config or {}
    data_dir = Path(project_dir) / get_tool_param(config, "data_dir", "data")
    pattern = get_tool_param(config, "barcode_pattern", "barcode*")
    if not data_dir.is_dir():
        logging.warning(f"No data directory found in {project_dir}")
        return []
    return sorted(
        (entry for entry in data_dir.iterdir() if entry.is_dir() and fnmatch.fnmatchcase(entry.name, pattern)),
        key=lambda entry: entry.name,
    )


def process_project(project_dir, threads, reference_override, config, tracker, timeout=None):
    """
    Process every barcode directory of one project.

    A project whose reference genome cannot be resolved is skipped. Otherwise it
    is reported as completed, even when some of its barcodes failed.

    Returns:
        dict: Outcome with keys project, path, status, reference, error and barcodes.
    """
    project_dir = Path(project_dir)
    logging.info(f"Processing project directory: {project_dir.name}")
    outcome = {
        "project": project_dir.name,
        "path": str(project_dir),
        "status": "completed",
        "reference": None,
        "error": None,
        "barcodes": [],
    }

    try:
        reference = resolve_reference(project_dir, reference_override, config)
    except FileNotFoundError as e:
        logging.error(f"Error: {e}")
        outcome["status"] = "skipped"
        outcome["error"] = str(e)
        return outcome
    outcome["reference"] = str(reference)

    barcodes = discover_barcodes(project_dir, config)
    if not barcodes:
        logging.info(f"No barcode directories found in project {project_dir.name}")

    for barcode_dir in barcodes:
        outcome["barcodes"].append(
            process_barcode(barcode_dir, project_dir, reference, threads, config, tracker, timeout=timeout)
        )

    failed = [barcode["barcode"] for barcode in outcome["barcodes"] if barcode["state"] == BarcodeState.FAILED.value]
    if failed:
        logging.warning(f"Project {project_dir.name}: {len(failed)} barcode(s) failed: {', '.join(failed)}")
    return outcome


def list_projects(base_dir) -> List[Path]:
    """Immediate subdirectories of the base directory, sorted by name."""
    return sorted((entry for entry in Path(base_dir).iterdir() if entry.is_dir()), key=lambda entry: entry.name)


def select_projects(run_config: RunConfig, input_provider: Optional[Callable[[List[str]], str]] = None) -> List[Path]:
    """
    Resolve the project directories selected by a RunConfig.

    Args:
        run_config (RunConfig): Validated run configuration.
        input_provider (callable, optional): Asked for a project name, given the
            available names, when the run is interactive.

    Returns:
        List[Path]: Project directories to process.

    Raises:
        ValueError: If an interactive run has no input provider or gets an empty name.
        FileNotFoundError: If the selected project directory does not exist.
    """
    base_dir = Path(run_config.base_dir)
    if run_config.process_all:
        logging.info(f"Processing all project directories in {base_dir}")
        return list_projects(base_dir)

    project = run_config.project
    if not project:
        if input_provider is None:
            raise ValueError("No project selected and no interactive input available.")
        project = (input_provider([entry.name for entry in list_projects(base_dir)]) or "").strip()
        if not project:
            raise ValueError("No project directory entered.")

    project_dir = base_dir / project
    if not project_dir.is_dir():
        raise FileNotFoundError(f"Project directory '{project}' does not exist")
    return [project_dir]


def run_pipeline(
    run_config: RunConfig,
    config: dict,
    tracker: Optional[ResourceTracker] = None,
    input_provider: Optional[Callable[[List[str]], str]] = None,
    summary_path=None,
) -> dict:
    """
    Main pipeline function: select projects, process each of them and release
    every transient file exactly once when the run ends, however it ends.

    Args:
        run_config (RunConfig): Run parameters.
        config (dict): Configuration dictionary.
        tracker (ResourceTracker, optional): Registry for transient paths; a new
            one is created when omitted. It is cleaned up before returning.
        input_provider (callable, optional): Interactive project chooser.
        summary_path (str or Path, optional): JSON summary output; a TSV table is
            written next to it.

    Returns:
        dict: The run summary.

    Raises:
        ValueError: On configuration errors.
        FileNotFoundError: If the base or selected project directory is missing.
        RuntimeError: If a required external tool is not installed.
    """
    validate_run_config(run_config)
    tracker = tracker if tracker is not None else ResourceTracker()

    try:
        projects = select_projects(run_config, input_provider)
        check_dependencies(config)
        tool_versions = get_tool_versions(config)
        logging.info(f"fastqbam {VERSION} started with tool versions: {tool_versions}")

        summary = start_summary(
            version=VERSION,
            run_config={key: str(value) if isinstance(value, Path) else value for key, value in run_config._asdict().items()},
            tool_versions=tool_versions,
        )
        overall_start = timeit.default_timer()

        for project_dir in projects:
            outcome = process_project(
                project_dir,
                run_config.threads,
                run_config.reference,
                config,
                tracker,
                timeout=run_config.timeout,
            )
            record_project(summary, outcome, write_summary_path=summary_path)

        end_summary(summary)
        summary["runtime_seconds"] = round(timeit.default_timer() - overall_start, 2)
        if summary_path is not None:
            write_summary(summary, summary_path)
            tsv_path = Path(summary_path).with_suffix(".tsv")
            convert_summary_to_tsv(summary, tsv_path)
            logging.info(f"Run summary written to {summary_path} and {tsv_path}")

        counts = summary["counts"]
        if has_failures(summary):
            logging.warning(
                f"Pipeline completed with failures: {counts['barcodes_failed']} of {counts['barcodes']} "
                f"barcode(s) failed, {counts['projects_skipped']} project(s) skipped."
            )
        else:
            logging.info("Pipeline completed successfully!")
        return summary
    finally:
        tracker.cleanup()
