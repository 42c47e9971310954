from __future__ import annotations

import json

from buildcache.state import PhaseState


def test_values_survive_a_new_instance(tmp_path):
    path = tmp_path / "run" / "state.json"
    PhaseState(path).save("workspace", "org/project")
    PhaseState(path).save("proxyPid", 4242)

    reopened = PhaseState(path)
    assert reopened.get("workspace") == "org/project"
    assert reopened.get("proxyPid") == "4242"
    assert json.loads(path.read_text(encoding="utf-8")) == {"proxyPid": "4242", "workspace": "org/project"}


def test_booleans_and_missing_keys(tmp_path):
    state = PhaseState(tmp_path / "state.json")
    state.save("verbose", True)
    state.save("exclude", None)
    assert state.get("verbose") == "true"
    assert state.get("exclude") == ""
    assert state.get("cacheTag") == ""
    assert state.get("cacheTag", "fallback") == "fallback"


def test_corrupt_file_reads_as_empty(tmp_path):
    path = tmp_path / "state.json"
    path.write_text("{not json", encoding="utf-8")
    state = PhaseState(path)
    assert state.as_dict() == {}
    state.save("cacheTag", "my-app")
    assert state.as_dict() == {"cacheTag": "my-app"}
