#!/usr/bin/env python3
# fastqbam/scripts/archive_processing.py

import gzip
import logging
import shutil
import zlib
import zipfile
from pathlib import Path

from fastqbam.scripts.utils import get_tool_param, list_files_with_extensions

DEFAULT_READ_EXTENSIONS = [".fastq", ".fq"]
DEFAULT_ARCHIVE_EXTENSIONS = [".gz", ".zip"]


def _target_is_user_file(target, tracker):
    """True when target exists but was not produced by this run."""
    return target.exists() and not tracker.is_registered(target)


def _write_read_file(source, target, tracker):
    """Copy an archive stream to target. A partial target is discarded on failure."""
    # Registered before writing so an interrupted copy is still cleaned up
    tracker.register_file(target)
    try:
        with open(target, "wb") as f_out:
            shutil.copyfileobj(source, f_out)
    except (OSError, EOFError, zlib.error, zipfile.BadZipFile):
        tracker.discard(target)
        raise


def decompress_gzip(archive, tracker, read_extensions):
    """
    Decompress a single-file gzip archive next to the original, keeping the
    original (like `gunzip -k`).

    Args:
        archive (Path): Path to the .gz file.
        tracker (ResourceTracker): Registry for the produced file.
        read_extensions (list of str): Recognized read-file extensions.

    Returns:
        list of Path: The produced read file, or an empty list if skipped.
    """
    output_file = archive.with_name(archive.name[: -len(".gz")])
    if not output_file.name.endswith(tuple(read_extensions)):
        logging.debug(f"Ignoring {archive.name}: not a compressed read file")
        return []
    if _target_is_user_file(output_file, tracker):
        logging.warning(f"Skipping {archive.name}: {output_file.name} already exists and is left untouched.")
        return []

    with gzip.open(archive, "rb") as f_in:
        _write_read_file(f_in, output_file, tracker)
    logging.info(f"Decompressed: {output_file}")
    return [output_file]


def extract_zip(archive, tracker, read_extensions):
    """
    Extract every read file in a zip archive flat into the archive's directory
    (member paths are dropped, like `unzip -j`). Non-read members are ignored.

    Args:
        archive (Path): Path to the .zip file.
        tracker (ResourceTracker): Registry for the produced files.
        read_extensions (list of str): Recognized read-file extensions.

    Returns:
        list of Path: The produced read files.
    """
    produced = []
    with zipfile.ZipFile(archive, "r") as zip_ref:
        for member in zip_ref.infolist():
            if member.is_dir():
                continue
            name = Path(member.filename).name
            if not name.endswith(tuple(read_extensions)):
                logging.debug(f"Ignoring non-read member {member.filename} in {archive.name}")
                continue

            target = archive.parent / name
            if _target_is_user_file(target, tracker):
                logging.warning(
                    f"Skipping member {member.filename} of {archive.name}: "
                    f"{target.name} already exists and is left untouched."
                )
                continue

            with zip_ref.open(member) as f_in:
                _write_read_file(f_in, target, tracker)
            produced.append(target)
            logging.info(f"Decompressed: {target}")
    return produced


def expand_archives(barcode_dir, tracker, config=None):
    """
    Expand every supported archive in a barcode directory into plain read files
    in the same directory.

    A failing archive is reported and skipped; the remaining archives are still
    expanded.

    Args:
        barcode_dir (str or Path): Directory holding the raw read files.
        tracker (ResourceTracker): Registry for every produced read file.
        config (dict, optional): Configuration with 'tool_params' overrides.

    Returns:
        list of Path: All read files produced, in archive order.
    """
    config = config or {}
    read_extensions = get_tool_param(config, "read_extensions", DEFAULT_READ_EXTENSIONS)
    archive_extensions = get_tool_param(config, "archive_extensions", DEFAULT_ARCHIVE_EXTENSIONS)

    archives = list_files_with_extensions(barcode_dir, archive_extensions)
    if not archives:
        logging.info(f"No compressed FASTQ files found in {barcode_dir}")
        return []

    logging.info(f"Decompressing {len(archives)} archive(s) in {barcode_dir}")
    produced = []
    for archive in archives:
        try:
            if archive.name.endswith(".zip"):
                produced.extend(extract_zip(archive, tracker, read_extensions))
            elif archive.name.endswith(".gz"):
                produced.extend(decompress_gzip(archive, tracker, read_extensions))
        except (OSError, EOFError, zlib.error, zipfile.BadZipFile) as e:
            logging.error(f"Failed to decompress {archive}: {e}")
    return produced
