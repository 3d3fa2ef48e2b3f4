#!/usr/bin/env python3
# fastqbam/scripts/alignment_processing.py

import logging
import shlex
from pathlib import Path
from typing import Callable, List, Optional

from fastqbam.scripts.resource_tracker import ResourceTracker
from fastqbam.scripts.utils import (
    get_tool_param,
    list_files_with_extensions,
    log_progress,
    read_log_tail,
    run_command,
    strip_extension,
)

DEFAULT_READ_EXTENSIONS = [".fastq", ".fq"]


def list_read_files(barcode_dir: Path, config: dict) -> List[Path]:
    """
    List the plain read files directly inside a barcode directory, sorted by name.

    Args:
        barcode_dir (Path): Barcode directory (after archive expansion).
        config (dict): Configuration dictionary with optional 'tool_params.read_extensions'.

    Returns:
        List[Path]: Read files in lexicographic order.
    """
    extensions = get_tool_param(config, "read_extensions", DEFAULT_READ_EXTENSIONS)
    return list_files_with_extensions(barcode_dir, extensions)


def build_minimap2_command(minimap2_path, reference, fastq, output_sam, threads, preset):
    """Build the minimap2 command line writing SAM output to output_sam."""
    return (
        f"{minimap2_path} -t {threads} -a -x {preset} "
        f"{shlex.quote(str(reference))} {shlex.quote(str(fastq))} "
        f"-o {shlex.quote(str(output_sam))}"
    )


def align_fastq_files(
    barcode_dir: Path,
    reference: Path,
    output_dir: Path,
    threads: int,
    config: dict,
    tracker: ResourceTracker,
    progress: Optional[Callable[[int, int], None]] = None,
    timeout: Optional[float] = None,
) -> List[str]:
    """
    Align every plain FASTQ file of a barcode directory to the reference with minimap2.

    This function performs the following steps:
    1. Creates the SAM staging directory and registers it as transient.
    2. Lists the FASTQ files of the barcode directory in a stable order.
    3. Runs minimap2 once per file, writing `<base>.sam` into the staging directory.
    4. Reports progress as (index, total) after each file.

    Alignment stops at the first failing file. SAM files written before the
    failure stay on disk until the run's cleanup.

    Args:
        barcode_dir (Path): Directory containing the FASTQ files.
        reference (Path): Path to the reference genome in FASTA format.
        output_dir (Path): SAM staging directory.
        threads (int): Number of threads passed to minimap2.
        config (dict): Configuration dictionary with tool paths and parameters.
        tracker (ResourceTracker): Registry for transient paths.
        progress (callable, optional): Called as progress(index, total) after each file.
            Defaults to a logged progress bar.
        timeout (float, optional): Seconds allowed per minimap2 invocation.

    Returns:
        List[str]: Paths of the SAM files, in processing order.

    Raises:
        RuntimeError: If two FASTQ files share a base name or minimap2 fails for any file.
    """
    minimap2_path = config.get("tools", {}).get("minimap2", "minimap2")
    preset = get_tool_param(config, "minimap2_preset", "sr")
    read_extensions = get_tool_param(config, "read_extensions", DEFAULT_READ_EXTENSIONS)
    progress = progress or (lambda current, total: log_progress(current, total, "Alignment"))

    output_dir = tracker.make_directory(output_dir)

    fastq_files = list_read_files(Path(barcode_dir), config)
    total = len(fastq_files)
    if total == 0:
        logging.warning(f"No FASTQ files found in {barcode_dir}")
        return []

    # reads.fastq and reads.fq would both write reads.sam
    bases = {}
    for fastq in fastq_files:
        base = strip_extension(fastq.name, read_extensions)
        if base in bases:
            raise RuntimeError(
                f"FASTQ files {bases[base].name} and {fastq.name} in {barcode_dir} "
                f"would both be aligned to {base}.sam"
            )
        bases[base] = fastq

    logging.info(f"Processing {total} FASTQ file(s) with minimap2...")
    sam_files = []
    for index, fastq in enumerate(fastq_files, start=1):
        base = strip_extension(fastq.name, read_extensions)
        output_sam = output_dir / f"{base}.sam"
        log_file = output_dir / f"{base}_minimap2.log"
        tracker.register_file(output_sam)
        tracker.register_file(log_file)

        command = build_minimap2_command(minimap2_path, reference, fastq, output_sam, threads, preset)
        logging.info(f"Aligning {fastq.name} with command: {command}")

        if not run_command(command, str(log_file), timeout=timeout):
            tail = read_log_tail(log_file)
            if tail:
                logging.error(f"minimap2 output for {fastq.name}:\n{tail}")
            raise RuntimeError(f"minimap2 alignment failed for {fastq} (barcode {Path(barcode_dir).name})")

        if not output_sam.exists():
            raise RuntimeError(f"minimap2 did not create {output_sam} for {fastq}")

        logging.info(f"Aligned {fastq.name} -> {output_sam.name}")
        sam_files.append(str(output_sam))
        progress(index, total)

    logging.info(f"minimap2 alignment completed for {total} FASTQ file(s).")
    return sam_files
