#!/usr/bin/env python3
# tests/unit/test_utils.py

"""
Unit tests for utility functions.
Includes testing for command execution, file listing, progress reporting,
configuration loading and dependency checks.
"""

import json
import logging
from unittest.mock import MagicMock, patch

import pytest

from fastqbam.scripts.utils import (
    check_dependencies,
    get_tool_version,
    list_files_with_extensions,
    load_config,
    log_progress,
    read_log_tail,
    run_command,
    strip_extension,
)


def test_run_command_success(tmp_path):
    """
    Test successful execution of a shell command.
    """
    log_file = tmp_path / "cmd.log"
    result = run_command("echo 'Hello test_run_command'", str(log_file))
    assert result is True, "Expected run_command to succeed."
    assert "Hello test_run_command" in log_file.read_text()


@patch("subprocess.Popen")
def test_run_command_failure(mock_popen, tmp_path):
    """
    Test failure scenario for a shell command execution.
    """
    log_file = tmp_path / "fail.log"
    process_mock = MagicMock()
    process_mock.stdout = [b"Simulated error\n"]
    process_mock.wait.return_value = 1
    process_mock.returncode = 1
    mock_popen.return_value = process_mock

    ret = run_command("bad_command", str(log_file))
    assert not ret, "Expected run_command to fail."
    assert "Simulated error" in log_file.read_text()


def test_run_command_critical_failure_raises(tmp_path):
    with pytest.raises(RuntimeError, match="exit status 3"):
        run_command("exit 3", str(tmp_path / "fail.log"), critical=True)


def test_run_command_pipefail(tmp_path):
    """A failing first phase fails the whole pipeline when pipefail is set."""
    assert run_command("false | cat", str(tmp_path / "a.log")) is True
    assert run_command("set -o pipefail; false | cat", str(tmp_path / "b.log")) is False


def test_run_command_timeout(tmp_path):
    log_file = tmp_path / "slow.log"
    assert run_command("sleep 10", str(log_file), timeout=0.5) is False
    with pytest.raises(RuntimeError, match="timed out"):
        run_command("sleep 10", str(log_file), critical=True, timeout=0.5)


def test_read_log_tail(tmp_path):
    log_file = tmp_path / "tool.log"
    log_file.write_text("".join(f"line {i}\n" for i in range(10)))
    assert read_log_tail(log_file, lines=2) == "line 8\nline 9"
    assert read_log_tail(tmp_path / "missing.log") == ""


def test_list_files_with_extensions_is_sorted_and_flat(tmp_path):
    for name in ["b.fq", "a.fastq", "c.txt", "d.fastq.gz"]:
        (tmp_path / name).write_text("x")
    (tmp_path / "nested").mkdir()
    (tmp_path / "nested" / "e.fastq").write_text("x")
    (tmp_path / "dir.fastq").mkdir()

    found = list_files_with_extensions(tmp_path, [".fastq", ".fq"])
    assert [path.name for path in found] == ["a.fastq", "b.fq"]


def test_list_files_with_extensions_missing_directory(tmp_path):
    assert list_files_with_extensions(tmp_path / "absent", [".fq"]) == []


def test_strip_extension_prefers_longest_match():
    assert strip_extension("reads.fastq", [".fq", ".fastq"]) == "reads"
    assert strip_extension("reads.1.fq", [".fq", ".fastq"]) == "reads.1"
    assert strip_extension("reads.txt", [".fq"]) == "reads.txt"


def test_log_progress(caplog):
    with caplog.at_level(logging.INFO):
        log_progress(1, 4, label="Alignment", width=8)
        log_progress(0, 0)
    assert "Alignment: [==      ] 25% (1/4)" in caplog.text
    assert caplog.text.count("%") == 1


def test_load_config_default():
    config = load_config(None)
    assert config["tools"]["minimap2"] == "minimap2"
    assert config["default_values"]["threads"] == 8
    assert config["tool_params"]["barcode_pattern"] == "barcode*"


def test_load_config_user_file(tmp_path):
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"tools": {"samtools": "/opt/samtools"}}))
    assert load_config(config_path)["tools"]["samtools"] == "/opt/samtools"


def test_load_config_invalid_json(tmp_path):
    config_path = tmp_path / "config.json"
    config_path.write_text("{not json")
    with pytest.raises(json.JSONDecodeError):
        load_config(config_path)


def test_check_dependencies_missing_tool():
    config = {"tools": {"minimap2": "definitely-not-a-real-tool-xyz"}}
    with pytest.raises(RuntimeError, match="minimap2"):
        check_dependencies(config)


def test_check_dependencies_present():
    check_dependencies({"tools": {"shell": "bash"}})


@patch("fastqbam.scripts.utils.subprocess.run")
def test_get_tool_version_parsing(mock_run):
    mock_run.return_value = MagicMock(stdout="samtools 1.19\nUsing htslib 1.19\n", stderr="")
    assert get_tool_version("samtools") == "1.19"

    mock_run.return_value = MagicMock(stdout="2.26-r1175\n", stderr="")
    assert get_tool_version("minimap2") == "2.26-r1175"


def test_get_tool_version_missing_command():
    assert get_tool_version("definitely-not-a-real-tool-xyz") == "unknown"
