"""
Shared fixtures for all fastqbam tests.

External engines (minimap2, samtools) are never executed: the `fake_engines`
fixture replaces `run_command` in the stage modules with a stand-in that
creates the files the real tools would produce.
"""

import gzip
import shlex
import zipfile
from pathlib import Path
from types import SimpleNamespace

import pytest

from fastqbam.scripts.resource_tracker import ResourceTracker
from fastqbam.scripts.utils import load_config


FASTQ_RECORD = "@read1\nACGTACGT\n+\nIIIIIIII\n"


class FakeEngines:
    """
    Stand-in for run_command. Records every command and creates the output
    files of minimap2, the samtools consolidation pipeline, samtools index and
    samtools merge. Commands containing any string of `fail_on` fail.
    """

    def __init__(self, fail_on=None):
        self.calls = []
        self.fail_on = list(fail_on or [])

    def __call__(self, command, log_file, critical=False, timeout=None):
        self.calls.append(command)
        Path(log_file).write_text(f"$ {command}\n")
        if any(marker in command for marker in self.fail_on):
            Path(log_file).write_text("[E::main] simulated failure\n")
            if critical:
                raise RuntimeError(f"Critical command failed: {command}")
            return False

        tokens = shlex.split(command.replace("set -o pipefail;", ""))
        if Path(tokens[0]).name == "minimap2":
            output = tokens[tokens.index("-o") + 1]
            fastq = tokens[tokens.index("-o") - 1]
            Path(output).write_text(f"@HD\tVN:1.6\nSAM for {Path(fastq).name}\n")
        elif "fixmate" in tokens:
            last_o = len(tokens) - 1 - tokens[::-1].index("-o")
            Path(tokens[last_o + 1]).write_text(f"BAM from {Path(tokens[4]).name}\n")
        elif tokens[1] == "index":
            Path(tokens[2] + ".bai").write_text("BAI\n")
        elif tokens[1] == "merge":
            output = Path(tokens[3])
            output.write_text("".join(Path(bam).read_text() for bam in tokens[4:]))
        return True

    def commands_for(self, tool_word):
        return [command for command in self.calls if tool_word in command]


@pytest.fixture(scope="session")
def test_config():
    """The packaged default configuration."""
    return load_config(None)


@pytest.fixture
def tracker():
    tracker = ResourceTracker()
    yield tracker
    tracker.cleanup()


@pytest.fixture
def fake_engines(monkeypatch):
    engines = FakeEngines()
    monkeypatch.setattr("fastqbam.scripts.alignment_processing.run_command", engines)
    monkeypatch.setattr("fastqbam.scripts.bam_processing.run_command", engines)
    return engines


@pytest.fixture
def no_external_tools(monkeypatch):
    """Skip dependency and version checks and BAM statistics in pipeline runs."""
    monkeypatch.setattr("fastqbam.scripts.pipeline.check_dependencies", lambda config: None)
    monkeypatch.setattr("fastqbam.scripts.pipeline.get_tool_versions", lambda config: {})
    monkeypatch.setattr(
        "fastqbam.scripts.pipeline.summarize_bam",
        lambda bam: {"mapped": 10, "unmapped": 2},
    )


def write_fastq(path):
    path.write_text(FASTQ_RECORD)
    return path


def write_fastq_gz(path):
    with gzip.open(path, "wt") as handle:
        handle.write(FASTQ_RECORD)
    return path


def write_fastq_zip(path, members):
    with zipfile.ZipFile(path, "w") as archive:
        for member in members:
            archive.writestr(member, FASTQ_RECORD)
    return path


@pytest.fixture
def read_writers():
    """Helpers writing a plain, gzipped or zipped FASTQ file."""
    return SimpleNamespace(fastq=write_fastq, gz=write_fastq_gz, zip=write_fastq_zip)


@pytest.fixture
def make_project(tmp_path):
    """
    Factory building <base>/<name>/ with a default reference and barcode
    directories. `barcodes` maps a barcode name to the read files it holds;
    names ending in .gz are gzip archives.
    """
    base_dir = tmp_path / "IGVTesting"
    base_dir.mkdir(exist_ok=True)

    def _make(name="project1", barcodes=None, with_reference=True):
        project_dir = base_dir / name
        data_dir = project_dir / "data"
        data_dir.mkdir(parents=True)
        if with_reference:
            reference = project_dir / "errorCorrection" / "reference.fasta"
            reference.parent.mkdir(parents=True)
            reference.write_text(">chr1\nACGTACGTACGT\n")
        for barcode, files in (barcodes or {}).items():
            barcode_dir = data_dir / barcode
            barcode_dir.mkdir()
            for filename in files:
                if filename.endswith(".gz"):
                    write_fastq_gz(barcode_dir / filename)
                else:
                    write_fastq(barcode_dir / filename)
        return project_dir

    _make.base_dir = base_dir
    return _make
