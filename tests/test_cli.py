import json

import pytest
from click.testing import CliRunner

from linemark.cli import cli


@pytest.fixture
def project(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "app.py").write_text("import os\n\ndef main():\n    return 1\n")
    result = CliRunner().invoke(cli, ["init", "demo"])
    assert result.exit_code == 0, result.output
    return tmp_path


def invoke(*args):
    result = CliRunner().invoke(cli, list(args))
    assert result.exit_code == 0, result.output
    return result.output


def _first_id():
    [entry] = json.loads(invoke("export", "--format", "json"))
    return entry["id"]


def test_init_creates_config(project):
    assert (project / "linemark.toml").exists()
    assert (project / ".linemark" / "store").is_dir()
    assert "already exists" in invoke("init")


def test_add_list_and_remove(project):
    out = invoke("add", "app.py", "3", "--label", "main")
    assert "app.py:3" in out

    assert "main" in invoke("ls")
    assert "main" in invoke("ls", "--groups")
    assert "No bookmarks" in invoke("ls", "--filter", "nothing-like-this")

    bookmark_id = _first_id()
    assert bookmark_id[:8] in invoke("rm", bookmark_id[:8])
    assert "No bookmarks" in invoke("ls")


def test_rename_show_and_navigate(project):
    invoke("add", "app.py", "1")
    bookmark_id = _first_id()
    invoke("rename", bookmark_id[:8], "imports")
    assert "imports" in invoke("show", bookmark_id)
    assert "imports" in invoke("next", "app.py", "3")
    shown = invoke("show", bookmark_id).splitlines()
    assert any(line.startswith("access_count") and line.endswith(": 1") for line in shown)


def test_check_and_fix(project):
    invoke("add", "app.py", "3")
    (project / "app.py").write_text("# moved\nimport os\n\ndef main():\n    return 1\n")
    out = invoke("check")
    assert "drifted" in out
    assert "stale" in out

    invoke("fix", _first_id()[:8], "4")
    assert "stale" not in invoke("ls")


def test_mv_follows_file(project):
    invoke("add", "app.py", "1")
    (project / "app.py").rename(project / "main.py")
    assert "Moved 1" in invoke("mv", "app.py", "main.py")
    [entry] = json.loads(invoke("export", "--format", "json"))
    assert entry["path"] == "main.py"


def test_export_import_round(project):
    invoke("add", "app.py", "1", "--label", "first")
    invoke("export", "-o", "marks.csv")
    assert (project / "marks.csv").read_text().startswith("Label,File,Line,Path,ID")
    assert "Imported 0" in invoke("import", "marks.csv")

    (project / "more.json").write_text(json.dumps([{"label": "second", "path": "app.py", "line": 3}]))
    assert "Imported 1" in invoke("import", "more.json")
    assert len(json.loads(invoke("export", "--format", "json"))) == 2


def test_graph_is_json(project):
    invoke("add", "app.py", "1")
    graph = json.loads(invoke("graph"))
    assert len(graph["nodes"]) == 1
    assert graph["links"] == []


def test_config_and_key(project):
    assert '"per-workspace"' in invoke("config", "get", "storage_scope")
    invoke("add", "app.py", "1", "--label", "kept")
    invoke("config", "set", "encryption_enabled", "true")
    secret = invoke("key", "show").strip()
    assert len(secret) == 32
    assert "****" in invoke("config", "get", "encryption_secret")

    assert "re-encrypted" in invoke("key", "rotate")
    assert invoke("key", "show").strip() != secret
    assert "kept" in invoke("ls")


def test_migrate_to_global(project):
    invoke("add", "app.py", "1", "--label", "kept")
    out = invoke("migrate", "--to", "global")
    assert "Moved 1" in out
    assert "now using bookmarks" in out
    assert "kept" in invoke("ls")


def test_errors_become_click_errors(project):
    result = CliRunner().invoke(cli, ["rm", "no-such-id"])
    assert result.exit_code != 0
    assert "not found" in result.output

    result = CliRunner().invoke(cli, ["config", "set", "node_scale", "big"])
    assert result.exit_code != 0
