#!/usr/bin/env python3
# tests/unit/test_archive_processing.py

"""
Unit tests for in-place expansion of compressed FASTQ files.
"""

import gzip
import logging

from fastqbam.scripts.archive_processing import expand_archives


def test_expand_gzip_keeps_original(tmp_path, tracker, read_writers):
    read_writers.gz(tmp_path / "reads2.fq.gz")

    produced = expand_archives(tmp_path, tracker)

    assert produced == [tmp_path / "reads2.fq"]
    assert (tmp_path / "reads2.fq").read_text().startswith("@read1")
    assert (tmp_path / "reads2.fq.gz").exists()
    assert tracker.is_registered(tmp_path / "reads2.fq")


def test_expand_zip_flattens_read_members(tmp_path, tracker, read_writers):
    read_writers.zip(tmp_path / "run.zip", ["inner/a.fastq", "b.fq", "notes.txt"])

    produced = expand_archives(tmp_path, tracker)

    assert sorted(path.name for path in produced) == ["a.fastq", "b.fq"]
    assert (tmp_path / "a.fastq").exists()
    assert not (tmp_path / "inner").exists()
    assert not (tmp_path / "notes.txt").exists()
    assert (tmp_path / "run.zip").exists()


def test_no_archives_is_noop(tmp_path, tracker, read_writers):
    read_writers.fastq(tmp_path / "reads1.fastq")
    assert expand_archives(tmp_path, tracker) == []
    assert tracker.resources == []


def test_bad_archive_does_not_stop_siblings(tmp_path, tracker, read_writers, caplog):
    (tmp_path / "a_broken.fq.gz").write_bytes(b"this is not gzip")
    read_writers.gz(tmp_path / "b_good.fq.gz")
    (tmp_path / "c_broken.zip").write_bytes(b"not a zip either")

    with caplog.at_level(logging.ERROR):
        produced = expand_archives(tmp_path, tracker)

    assert produced == [tmp_path / "b_good.fq"]
    assert "a_broken.fq.gz" in caplog.text
    assert "c_broken.zip" in caplog.text
    # The partial output of the broken archive is removed, so it is never aligned
    assert not (tmp_path / "a_broken.fq").exists()
    assert tracker.is_registered(tmp_path / "a_broken.fq")


def test_existing_user_file_is_not_overwritten(tmp_path, tracker, read_writers):
    original = tmp_path / "reads.fq"
    original.write_text("user data")
    read_writers.gz(tmp_path / "reads.fq.gz")

    assert expand_archives(tmp_path, tracker) == []
    assert original.read_text() == "user data"
    assert not tracker.is_registered(original)


def test_re_expansion_is_idempotent(tmp_path, tracker, read_writers):
    read_writers.gz(tmp_path / "reads.fq.gz")
    read_writers.zip(tmp_path / "more.zip", ["x.fastq"])

    first = expand_archives(tmp_path, tracker)
    second = expand_archives(tmp_path, tracker)

    assert first == second
    read_files = sorted(path.name for path in tmp_path.iterdir() if path.name.endswith((".fq", ".fastq")))
    assert read_files == ["reads.fq", "x.fastq"]


def test_non_read_gzip_is_ignored(tmp_path, tracker):
    with gzip.open(tmp_path / "table.tsv.gz", "wt") as handle:
        handle.write("a\tb\n")
    assert expand_archives(tmp_path, tracker) == []
    assert not (tmp_path / "table.tsv").exists()


def test_corrupt_gzip_body_does_not_stop_siblings(tmp_path, tracker, read_writers, caplog):
    payload = gzip.compress(("@read1\n" + "ACGT" * 2000 + "\n+\n" + "I" * 8000 + "\n").encode())
    # Keep the 10-byte gzip header and the 8-byte trailer, garble the deflate stream
    corrupt = payload[:10] + b"\xff" * (len(payload) - 18) + payload[-8:]
    (tmp_path / "a_corrupt.fq.gz").write_bytes(corrupt)
    read_writers.gz(tmp_path / "b_good.fq.gz")

    with caplog.at_level(logging.ERROR):
        produced = expand_archives(tmp_path, tracker)

    assert produced == [tmp_path / "b_good.fq"]
    assert "a_corrupt.fq.gz" in caplog.text
    assert not (tmp_path / "a_corrupt.fq").exists()
