"""
fastqbam/scripts/summary.py

This module records the outcome of a pipeline run.
Each processed project is recorded with its reference genome, its status and
one entry per barcode directory (final state, error, merged BAM and read counts).

The summary can be written as JSON and flattened to a per-barcode TSV table.
"""

import json
from datetime import datetime, timezone

import pandas as pd

BARCODE_COLUMNS = [
    "project",
    "project_status",
    "barcode",
    "state",
    "failed_state",
    "fastq_count",
    "merged_bam",
    "mapped",
    "unmapped",
    "error",
]


def _now():
    return datetime.now(timezone.utc).isoformat()


def start_summary(version=None, run_config=None, tool_versions=None):
    """
    Initializes a new run summary.

    Args:
        version (str, optional): fastqbam version. Defaults to "unknown" if not provided.
        run_config (dict, optional): Parameters of the run.
        tool_versions (dict, optional): Versions of the external tools.

    Returns:
        dict: A summary dictionary with start timestamp, version and an empty projects list.
    """
    return {
        "pipeline_start": _now(),
        "version": version if version is not None else "unknown",
        "run_config": run_config if run_config is not None else {},
        "tool_versions": tool_versions if tool_versions is not None else {},
        "projects": [],
    }


def record_project(summary, project_outcome, write_summary_path=None):
    """
    Records a project outcome in the summary.

    Args:
        summary (dict): The summary dictionary to update.
        project_outcome (dict): Outcome returned by process_project.
        write_summary_path (str, optional): File path to write the summary after recording.
    """
    summary["projects"].append(project_outcome)
    if write_summary_path is not None:
        write_summary(summary, write_summary_path)


def end_summary(summary):
    """
    Adds the end timestamp and overall counts to the summary.

    Args:
        summary (dict): The summary dictionary to update.
    """
    barcodes = [barcode for project in summary["projects"] for barcode in project.get("barcodes", [])]
    summary["pipeline_end"] = _now()
    summary["counts"] = {
        "projects": len(summary["projects"]),
        "projects_skipped": sum(1 for project in summary["projects"] if project.get("status") == "skipped"),
        "barcodes": len(barcodes),
        "barcodes_failed": sum(1 for barcode in barcodes if barcode.get("state") == "failed"),
    }


def has_failures(summary):
    """True when any project was skipped or any barcode failed."""
    for project in summary.get("projects", []):
        if project.get("status") == "skipped":
            return True
        if any(barcode.get("state") == "failed" for barcode in project.get("barcodes", [])):
            return True
    return False


def write_summary(summary, output_path):
    """
    Writes the summary dictionary to a JSON file.

    Args:
        summary (dict): The summary dictionary.
        output_path (str): Path where the summary JSON will be written.
    """
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(summary, f, indent=4, default=str)


def summary_to_dataframe(summary):
    """
    Flatten the summary into one row per barcode. Skipped projects and projects
    without barcodes get a single row with an empty barcode.

    Args:
        summary (dict): The summary dictionary.

    Returns:
        pandas.DataFrame: Table with BARCODE_COLUMNS.
    """
    rows = []
    for project in summary.get("projects", []):
        barcodes = project.get("barcodes", [])
        if not barcodes:
            rows.append(
                {
                    "project": project.get("project"),
                    "project_status": project.get("status"),
                    "error": project.get("error"),
                }
            )
            continue
        for barcode in barcodes:
            row = {key: barcode.get(key) for key in BARCODE_COLUMNS}
            row["project"] = project.get("project")
            row["project_status"] = project.get("status")
            rows.append(row)
    return pd.DataFrame(rows, columns=BARCODE_COLUMNS)


def convert_summary_to_tsv(summary, output_tsv_path):
    """
    Converts the summary into a per-barcode TSV file.

    Args:
        summary (dict): The summary dictionary.
        output_tsv_path (str): Path where the TSV file will be written.
    """
    summary_to_dataframe(summary).to_csv(output_tsv_path, sep="\t", index=False)
