from __future__ import annotations

import json
import os
import platform
import shutil
import subprocess
import sys
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


TIME_FORMAT = "%Y%m%dT%H%M%SZ"
LOG_PREFIX = "[buildcache]"


def utc_now_iso() -> str:
    return datetime.now(tz=timezone.utc).replace(microsecond=0).isoformat()


def utc_timestamp() -> str:
    return datetime.now(tz=timezone.utc).strftime(TIME_FORMAT)


def info(message: str) -> None:
    print(f"{LOG_PREFIX} {message}", file=sys.stderr)


def notice(message: str) -> None:
    print(f"{LOG_PREFIX} notice: {message}", file=sys.stderr)


def warning(message: str) -> None:
    print(f"{LOG_PREFIX} warning: {message}", file=sys.stderr)


def debug(message: str) -> None:
    if os.environ.get("BUILDCACHE_DEBUG", "").strip().lower() == "true":
        print(f"{LOG_PREFIX} debug: {message}", file=sys.stderr)


def write_json(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2, sort_keys=True) + "\n", encoding="utf-8")


def atomic_write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = None
    try:
        with tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            dir=path.parent,
            delete=False,
            prefix=f".{path.name}.",
            suffix=".tmp",
        ) as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
            tmp_path = Path(handle.name)
        os.replace(tmp_path, path)
    finally:
        if tmp_path and tmp_path.exists():
            try:
                tmp_path.unlink()
            except OSError:
                pass


def read_tail(path: Path, limit: int = 4000) -> str:
    try:
        text = path.read_text(encoding="utf-8", errors="ignore")
    except OSError:
        return ""
    return text[-limit:]


def copy_or_replace_dir(src: Path, dst: Path) -> None:
    if dst.exists() or dst.is_symlink():
        if dst.is_dir() and not dst.is_symlink():
            shutil.rmtree(dst, ignore_errors=True)
        else:
            try:
                dst.unlink()
            except FileNotFoundError:
                pass
    shutil.copytree(src, dst)


@dataclass
class PhaseRun:
    """Per-invocation record of one pipeline phase.

    Collects notes and outputs while the phase runs and writes them to
    ``<run_root>/phases/<phase>/<timestamp>/summary.json`` on finalize, with
    a copy under ``latest``. Outputs are additionally appended to the file
    named by ``output_file`` (the runner's output channel) when set.
    """

    phase: str
    run_root: Path
    output_file: Path | None = None
    started_at: str = field(default_factory=utc_now_iso)
    notes: list[str] = field(default_factory=list)
    outputs: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.run_root = self.run_root.resolve()
        self.timestamp = utc_timestamp()
        self.run_dir = self.run_root / "phases" / self.phase / self.timestamp
        self.latest_dir = self.run_root / "phases" / self.phase / "latest"
        self.run_dir.mkdir(parents=True, exist_ok=True)

    def add_note(self, note: str) -> None:
        self.notes.append(note)

    def set_output(self, name: str, value: Any) -> None:
        if isinstance(value, bool):
            value = "true" if value else "false"
        self.outputs[name] = "" if value is None else str(value)

    def _write_output_channel(self) -> None:
        if self.output_file is None or not self.outputs:
            return
        self.output_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.output_file, "a", encoding="utf-8") as handle:
            for name, value in self.outputs.items():
                handle.write(f"{name}={value}\n")

    def finalize(
        self,
        status: str,
        *,
        emit_json: bool = False,
        summary_updates: dict[str, Any] | None = None,
    ) -> int:
        summary = {
            "ended_at": utc_now_iso(),
            "notes": self.notes,
            "outputs": self.outputs,
            "phase": self.phase,
            "python_version": platform.python_version(),
            "started_at": self.started_at,
            "status": status,
        }
        if summary_updates:
            summary.update(summary_updates)
        write_json(self.run_dir / "summary.json", summary)
        copy_or_replace_dir(self.run_dir, self.latest_dir)
        self._write_output_channel()
        if emit_json:
            print(json.dumps(summary, indent=2, sort_keys=True))
        return 0 if status == "pass" else 1


@dataclass
class CommandResult:
    cmd: list[str]
    cwd: str
    exit_code: int
    stdout: str
    stderr: str

    @property
    def output(self) -> str:
        return self.stdout + self.stderr


def run_command(
    cmd: list[str],
    cwd: Path | None = None,
    timeout_sec: int | None = 120,
    env: dict[str, str] | None = None,
) -> CommandResult:
    completed = subprocess.run(
        cmd,
        cwd=str(cwd) if cwd else None,
        capture_output=True,
        text=True,
        timeout=timeout_sec,
        check=False,
        env=env,
    )
    return CommandResult(
        cmd=cmd,
        cwd=str(cwd or Path.cwd()),
        exit_code=completed.returncode,
        stdout=completed.stdout,
        stderr=completed.stderr,
    )


def run_streaming(cmd: list[str], cwd: Path | None = None, env: dict[str, str] | None = None) -> int:
    """Run ``cmd`` with its output forwarded line by line to stderr; return the exit code."""
    debug(f"Running command: {' '.join(cmd)}")
    process = subprocess.Popen(
        cmd,
        cwd=str(cwd) if cwd else None,
        env=env,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
        bufsize=1,
    )
    assert process.stdout is not None
    for line in process.stdout:
        sys.stderr.write(line)
    return process.wait()
