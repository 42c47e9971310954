from __future__ import annotations

import pytest

from buildcache.cache_cli import CacheCommandError, restore_cache, save_cache, was_cache_hit
from buildcache.runtime import CommandResult


def _result(exit_code: int = 0, stdout: str = "", stderr: str = "") -> CommandResult:
    return CommandResult(cmd=["boringcache"], cwd=".", exit_code=exit_code, stdout=stdout, stderr=stderr)


@pytest.mark.parametrize(
    "stdout",
    [
        "Cache miss for tag my-app",
        "No cache entries found",
        "Found 0/1 entries",
        "CACHE MISS",
    ],
)
def test_miss_patterns(stdout):
    assert was_cache_hit(_result(stdout=stdout)) is False


def test_hit_and_failure_detection():
    assert was_cache_hit(_result(stdout="Restored 12 files (Found 1/1)")) is True
    assert was_cache_hit(_result()) is True
    assert was_cache_hit(_result(exit_code=1, stdout="restored")) is False
    assert was_cache_hit(_result(stderr="no cache entries for tag")) is False


def test_restore_skipped_without_token(fake_cli, tmp_path):
    assert restore_cache("org/project", "my-app", tmp_path / "from") is False
    assert fake_cli.calls() == []


def test_restore_reports_miss_and_hit(fake_cli, token, tmp_path, monkeypatch):
    cache_dir = tmp_path / "from"
    assert restore_cache("org/project", "my-app", cache_dir, verbose=True) is False
    assert fake_cli.calls_for("restore") == [
        ["restore", "org/project", f"my-app:{cache_dir}", "--verbose"],
    ]

    monkeypatch.setenv("FAKE_RESTORE_OUTPUT", "Restored 3 entries")
    assert restore_cache("org/project", "my-app", cache_dir) is True


def test_restore_nonzero_exit_is_a_miss(fake_cli, token, tmp_path, monkeypatch):
    monkeypatch.setenv("FAKE_RESTORE_OUTPUT", "Restored 3 entries")
    monkeypatch.setenv("FAKE_RESTORE_EXIT", "1")
    assert restore_cache("org/project", "my-app", tmp_path / "from") is False


def test_save_skips_empty_or_missing_directory(fake_cli, token, tmp_path):
    empty = tmp_path / "to"
    empty.mkdir()
    assert save_cache("org/project", "my-app", empty) is False
    assert save_cache("org/project", "my-app", tmp_path / "absent") is False
    assert fake_cli.calls_for("save") == []


def test_save_uploads_export_directory(fake_cli, token, tmp_path):
    export = tmp_path / "to"
    export.mkdir()
    (export / "index.json").write_text("{}", encoding="utf-8")

    assert save_cache("org/project", "my-app", export, verbose=True, exclude="*.tmp") is True
    assert fake_cli.calls_for("save") == [
        [
            "save",
            "org/project",
            f"my-app:{export}",
            "--force",
            "--verbose",
            "--exclude",
            "*.tmp",
        ]
    ]


def test_save_skipped_without_token(fake_cli, tmp_path):
    export = tmp_path / "to"
    export.mkdir()
    (export / "index.json").write_text("{}", encoding="utf-8")
    assert save_cache("org/project", "my-app", export) is False
    assert fake_cli.calls() == []


def test_save_failure_raises(fake_cli, token, tmp_path, monkeypatch):
    monkeypatch.setenv("FAKE_SAVE_EXIT", "4")
    export = tmp_path / "to"
    export.mkdir()
    (export / "blob").write_text("x", encoding="utf-8")
    with pytest.raises(CacheCommandError, match="exit code 4"):
        save_cache("org/project", "my-app", export)


def test_missing_cli_binary(token, tmp_path):
    with pytest.raises(CacheCommandError, match="Cache CLI not found"):
        restore_cache("org/project", "my-app", tmp_path / "from", binary=str(tmp_path / "nope"))
