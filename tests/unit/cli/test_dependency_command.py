"""Unit tests for dependency CLI command wiring."""

from __future__ import annotations

import json
from pathlib import Path

import yaml

from cli.main import main


def _loaded_file_id(tmp_path: Path, monkeypatch, write_source, capsys) -> str:
    monkeypatch.setenv("BULKLOAD_DRIVER_WAIT_SECONDS", "0.01")
    monkeypatch.setenv("BULKLOAD_DATA_ROOT", str(tmp_path / "data"))
    source = write_source("a.txt", "alpha")
    request_path = tmp_path / "request.yaml"
    request_path.write_text(
        yaml.safe_dump(
            {
                "dataset_id": "col-1",
                "files": [{"source_path": str(source), "target_path": "/a.txt"}],
            }
        ),
        encoding="utf-8",
    )
    main(["load", str(request_path)])
    capsys.readouterr()
    main(["lookup", "col-1", "/a.txt"])
    return json.loads(capsys.readouterr().out)["file_id"]


def test_cli_dependency_add_prints_refcount(tmp_path, monkeypatch, write_source, capsys) -> None:
    """Adding a dependency should print the new reference count."""
    file_id = _loaded_file_id(tmp_path, monkeypatch, write_source, capsys)

    exit_code = main(["dependency", "add", "snapshot-1", file_id])
    output = capsys.readouterr().out

    assert exit_code == 0 and output.strip() == "refcount=1"


def test_cli_dependency_blocks_delete(tmp_path, monkeypatch, write_source, capsys) -> None:
    """Delete should report the consumer that still references the file."""
    file_id = _loaded_file_id(tmp_path, monkeypatch, write_source, capsys)
    main(["dependency", "add", "snapshot-1", file_id])
    capsys.readouterr()

    exit_code = main(["delete", "col-1", file_id])
    output = capsys.readouterr().out

    assert exit_code == 1 and output.strip() == "dependency_exists=snapshot-1"


def test_cli_dependency_remove_releases_file(tmp_path, monkeypatch, write_source, capsys) -> None:
    """Removing the last dependency should drop the count to zero."""
    file_id = _loaded_file_id(tmp_path, monkeypatch, write_source, capsys)
    main(["dependency", "add", "snapshot-1", file_id])
    capsys.readouterr()

    main(["dependency", "remove", "snapshot-1", file_id])
    output = capsys.readouterr().out

    assert output.strip() == "refcount=0"
