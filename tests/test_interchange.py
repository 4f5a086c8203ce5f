import json

import pytest
from conftest import make_bookmark

from linemark.interchange import dedupe_against, export_bookmarks, format_for, parse_bookmarks


@pytest.fixture
def marks():
    return [
        make_bookmark("id-1", "src/app.py", 0, label="imports"),
        make_bookmark("id-2", "src/app.py", 41, label="a | b"),
    ]


def test_format_for_suffix():
    assert format_for("out.MD") == "markdown"
    assert format_for("x.csv") == "csv"
    with pytest.raises(ValueError):
        format_for("bookmarks.xml")


def test_unknown_format_rejected(marks):
    with pytest.raises(ValueError):
        export_bookmarks(marks, "yaml")
    with pytest.raises(ValueError):
        parse_bookmarks("", "yaml")


def test_markdown_export_is_one_based(marks):
    text = export_bookmarks(marks, "markdown")
    lines = text.splitlines()
    assert lines[0] == "| Label | File | Line | Path |"
    assert lines[2] == "| imports | app.py | 1 | `src/app.py` |"
    assert "a \\| b" in lines[3]


def test_markdown_import_unescapes_pipes(marks):
    parsed = parse_bookmarks(export_bookmarks(marks, "markdown"), "markdown")
    assert [(b.label, b.file_path, b.line) for b in parsed] == [
        ("imports", "src/app.py", 0),
        ("a | b", "src/app.py", 41),
    ]


def test_markdown_path_with_pipe_survives():
    odd = make_bookmark("id-3", "docs/a|b.md", 4, label="odd name")
    text = export_bookmarks([odd], "markdown")
    assert text.splitlines()[2] == "| odd name | a\\|b.md | 5 | `docs/a\\|b.md` |"
    [parsed] = parse_bookmarks(text, "markdown")
    assert (parsed.label, parsed.file_path, parsed.line) == ("odd name", "docs/a|b.md", 4)


def test_json_export_fields(marks):
    data = json.loads(export_bookmarks(marks, "json"))
    assert data[1] == {"label": "a | b", "path": "src/app.py", "line": 42, "id": "id-2"}


def test_json_import_skips_entries_without_path():
    text = json.dumps([{"label": "ok", "path": "a.py", "line": 3}, {"label": "no path"}, "junk"])
    [b] = parse_bookmarks(text, "json")
    assert (b.label, b.line) == ("ok", 2)


def test_csv_export_header(marks):
    rows = export_bookmarks(marks, "csv").splitlines()
    assert rows[0] == "Label,File,Line,Path,ID"
    assert rows[1] == "imports,app.py,1,src/app.py,id-1"


def test_csv_import_skips_bad_rows():
    text = "Label,File,Line,Path,ID\nok,a.py,7,src/a.py,x\nbad,a.py,seven,src/a.py,y\nshort,a.py\n"
    [b] = parse_bookmarks(text, "csv")
    assert (b.label, b.file_path, b.line) == ("ok", "src/a.py", 6)


def test_txt_blocks(marks):
    text = export_bookmarks(marks, "txt")
    assert "-" * 50 in text
    parsed = parse_bookmarks(text, "txt")
    assert [(b.label, b.line) for b in parsed] == [("imports", 0), ("a | b", 41)]
    assert export_bookmarks([], "txt") == ""


def test_imports_get_fresh_ids_and_roots(marks):
    parsed = parse_bookmarks(export_bookmarks(marks, "json"), "json", workspace_root="/ws")
    assert {b.id for b in parsed}.isdisjoint({"id-1", "id-2"})
    assert {b.workspace_root for b in parsed} == {"/ws"}

    [absolute] = parse_bookmarks('[{"path": "/etc/hosts", "line": 1}]', "json", workspace_root="/ws")
    assert absolute.workspace_root is None


def test_dedupe_against_existing_and_batch():
    existing = [make_bookmark("e", "a.py", 1)]
    incoming = [
        make_bookmark("n1", "a.py", 1),
        make_bookmark("n2", "a.py", 2),
        make_bookmark("n3", "a.py", 2),
    ]
    assert [b.id for b in dedupe_against(existing, incoming)] == ["n2"]
