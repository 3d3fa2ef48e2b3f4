#!/usr/bin/env python3
# fastqbam/scripts/bam_processing.py

import logging
import shlex
from datetime import datetime
from pathlib import Path

import pysam

from fastqbam.scripts.utils import (
    get_tool_param,
    list_files_with_extensions,
    log_progress,
    read_log_tail,
    run_command,
)


def build_consolidation_command(samtools_path, sam_file, output_bam, threads):
    """
    Build the fixmate | sort | markdup | view pipeline turning one SAM file into
    a coordinate-sorted, duplicate-marked BAM. pipefail makes any failing phase
    fail the whole pipeline.
    """
    sam = shlex.quote(str(sam_file))
    bam = shlex.quote(str(output_bam))
    return (
        "set -o pipefail; "
        f"{samtools_path} fixmate -m -u {sam} - | "
        f"{samtools_path} sort -u -@{threads} - | "
        f"{samtools_path} markdup -@{threads} - - | "
        f"{samtools_path} view -b -o {bam} -"
    )


def index_bam(bam_file, log_file, config, timeout=None):
    """
    Build the .bai index for a BAM file with samtools index.

    Raises:
        RuntimeError: If samtools index fails.
    """
    samtools_path = config.get("tools", {}).get("samtools", "samtools")
    command = f"{samtools_path} index {shlex.quote(str(bam_file))}"
    logging.debug(f"Indexing BAM file with command: {command}")
    if not run_command(command, str(log_file), timeout=timeout):
        logging.error(f"samtools index failed for {bam_file}")
        raise RuntimeError(f"samtools index failed for {bam_file}")


def consolidate_sam_files(input_dir, output_dir, threads, config, tracker, progress=None, timeout=None):
    """
    Convert each SAM file of a staging directory into a sorted, duplicate-marked
    and indexed BAM file.

    For every SAM file (in filename order) the mate information is fixed, the
    records are coordinate sorted and duplicates are marked in a single stream,
    then the resulting BAM is indexed. Existing BAM/BAI files of the same name
    are overwritten. Processing stops at the first failure.

    Args:
        input_dir (str or Path): SAM staging directory.
        output_dir (str or Path): BAM staging directory, created if absent.
        threads (int): Number of threads passed to samtools.
        config (dict): Configuration dictionary containing tool paths.
        tracker (ResourceTracker): Registry for transient paths.
        progress (callable, optional): Called as progress(index, total) after each file.
        timeout (float, optional): Seconds allowed per samtools invocation.

    Returns:
        list of str: Paths of the finalized BAM files, in processing order.

    Raises:
        RuntimeError: If any samtools phase fails for any SAM file.
    """
    samtools_path = config.get("tools", {}).get("samtools", "samtools")
    progress = progress or (lambda current, total: log_progress(current, total, "Consolidation"))

    output_dir = tracker.make_directory(output_dir)
    sam_files = list_files_with_extensions(input_dir, [".sam"])
    total = len(sam_files)
    logging.info(f"Converting {total} SAM file(s) to BAM with additional processing...")

    bam_files = []
    for index, sam_file in enumerate(sam_files, start=1):
        base = sam_file.name[: -len(".sam")]
        output_bam = output_dir / f"{base}.bam"
        log_file = output_dir / f"{base}_consolidate.log"
        index_log = output_dir / f"{base}_index.log"
        for path in (output_bam, Path(f"{output_bam}.bai"), log_file, index_log):
            tracker.register_file(path)

        command = build_consolidation_command(samtools_path, sam_file, output_bam, threads)
        logging.info(f"Processing {base} with command: {command}")
        if not run_command(command, str(log_file), timeout=timeout):
            tail = read_log_tail(log_file)
            if tail:
                logging.error(f"samtools output for {sam_file.name}:\n{tail}")
            raise RuntimeError(f"samtools fixmate/sort/markdup failed for {sam_file.name}")

        try:
            index_bam(output_bam, index_log, config, timeout=timeout)
        except RuntimeError as e:
            raise RuntimeError(f"Indexing failed for {sam_file.name}: {e}") from e

        logging.info(f"Finalized {output_bam.name}")
        bam_files.append(str(output_bam))
        progress(index, total)

    return bam_files


def merged_bam_path(output_dir, prefix="merged", now=None):
    """
    Return a timestamp-named BAM path in output_dir that does not exist yet.

    The name is `<prefix>_YYYYmmdd_HHMMSS.bam`; a `_<n>` counter is appended when
    a file of that name is already present.
    """
    output_dir = Path(output_dir)
    timestamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
    candidate = output_dir / f"{prefix}_{timestamp}.bam"
    counter = 1
    while candidate.exists():
        candidate = output_dir / f"{prefix}_{timestamp}_{counter}.bam"
        counter += 1
    return candidate


def merge_bam_files(input_dir, output_dir, threads, config, tracker, timeout=None, now=None):
    """
    Merge every finalized BAM of a staging directory into one timestamp-named,
    indexed BAM file.

    Args:
        input_dir (str or Path): BAM staging directory.
        output_dir (str or Path): Permanent output directory, created if absent.
        threads (int): Number of threads passed to samtools merge.
        config (dict): Configuration dictionary containing tool paths.
        tracker (ResourceTracker): Registry for transient paths (logs, failed outputs).
        timeout (float, optional): Seconds allowed per samtools invocation.
        now (datetime, optional): Timestamp for the output name; defaults to the current time.

    Returns:
        str: Path to the merged BAM file.

    Raises:
        RuntimeError: If there is nothing to merge or samtools fails.
    """
    samtools_path = config.get("tools", {}).get("samtools", "samtools")
    prefix = get_tool_param(config, "merged_prefix", "merged")
    input_dir = Path(input_dir)

    bam_files = list_files_with_extensions(input_dir, [".bam"])
    if not bam_files:
        logging.error(f"No BAM files to merge in {input_dir}")
        raise RuntimeError(f"No BAM files to merge in {input_dir}")

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    final_bam = merged_bam_path(output_dir, prefix=prefix, now=now)
    log_file = input_dir / "merge.log"
    index_log = input_dir / "merge_index.log"
    tracker.register_file(log_file)
    tracker.register_file(index_log)

    inputs = " ".join(shlex.quote(str(bam)) for bam in bam_files)
    command = f"{samtools_path} merge -@{threads} {shlex.quote(str(final_bam))} {inputs}"
    logging.info(f"Merging {len(bam_files)} BAM file(s) with command: {command}")

    try:
        if not run_command(command, str(log_file), timeout=timeout):
            tail = read_log_tail(log_file)
            if tail:
                logging.error(f"samtools merge output:\n{tail}")
            raise RuntimeError(f"samtools merge failed for {input_dir}")
        index_bam(final_bam, index_log, config, timeout=timeout)
    except RuntimeError:
        # A failed merge leaves no permanent output behind
        tracker.register_file(final_bam)
        tracker.register_file(Path(f"{final_bam}.bai"))
        raise

    logging.info(f"Final BAM file: {final_bam}")
    return str(final_bam)


def summarize_bam(bam_file):
    """
    Read mapped/unmapped record counts of an indexed BAM file.

    Args:
        bam_file (str or Path): Path to an indexed BAM file.

    Returns:
        dict: {"mapped": int or None, "unmapped": int or None}
    """
    try:
        with pysam.AlignmentFile(str(bam_file), "rb") as bam:
            counts = {"mapped": bam.mapped, "unmapped": bam.unmapped}
    except (OSError, ValueError) as e:
        logging.warning(f"Could not read index statistics for {bam_file}: {e}")
        return {"mapped": None, "unmapped": None}

    logging.info(f"{Path(bam_file).name}: {counts['mapped']} mapped, {counts['unmapped']} unmapped reads")
    return counts
