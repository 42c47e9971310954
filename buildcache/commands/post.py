from __future__ import annotations

from typing import Any

from buildcache.backends import save_backend
from buildcache.commands.common import new_phase


def run(args: Any) -> int:
    phase_run, state, root = new_phase("post", args)
    note = save_backend(state, root)
    phase_run.add_note(note)
    return phase_run.finalize("pass", emit_json=bool(getattr(args, "json", False)))
