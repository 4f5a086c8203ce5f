from linemark.fingerprint import fingerprint
from linemark.models import Location
from linemark.staleness import StalenessDetector, check


class CountingReader:
    """In-memory documents that count how often each file is read."""

    def __init__(self, files):
        self.files = files
        self.reads = {}

    def read_lines(self, path):
        self.reads[path] = self.reads.get(path, 0) + 1
        text = self.files.get(path)
        return None if text is None else text.splitlines()

    def read_line(self, path, line):
        lines = self.read_lines(path)
        if lines is None or not 0 <= line < len(lines):
            return None
        return lines[line]


def test_check_is_pure_mismatch(store, app_py):
    b = store.add(Location(app_py, 0))
    assert check(b, fingerprint("import os")) is False
    assert check(b, fingerprint("import sys")) is True


def test_drift_marks_stale_and_snapshots_fingerprint(store, reader, workspace, app_py):
    detector = StalenessDetector(store, reader)
    b = store.add(Location(app_py, 2), roots=[workspace])
    original = b.content_fingerprint

    app_py.write_text("import os\n\ndef start():\n    return 1\n")
    report = detector.file_changed(app_py)
    got = store.get(b.id)
    assert report.drifted == [b.id]
    assert got.stale is True
    assert got.content_fingerprint == fingerprint("def start():")

    # The same text again matches the snapshot: nothing new happens.
    report = detector.file_changed(app_py)
    assert report.drifted == []
    assert store.get(b.id).stale is True

    # Restoring the original text is a new mismatch; stale stays set.
    app_py.write_text("import os\n\ndef main():\n    return 1\n")
    detector.file_changed(app_py)
    got = store.get(b.id)
    assert got.stale is True
    assert got.content_fingerprint == original

    store.fix_position(b.id, 2, original)
    assert store.get(b.id).stale is False


def test_missing_file_marks_stale_keeping_fingerprint(store, reader, workspace, app_py):
    detector = StalenessDetector(store, reader)
    b = store.add(Location(app_py, 0), roots=[workspace])
    app_py.unlink()
    report = detector.check_all()
    got = store.get(b.id)
    assert report.unreachable == [b.id]
    assert got.stale is True
    assert got.content_fingerprint == fingerprint("import os")


def test_line_past_end_is_unreachable(store, reader, workspace, app_py):
    detector = StalenessDetector(store, reader)
    b = store.add(Location(app_py, 3), roots=[workspace])
    app_py.write_text("import os\n")
    report = detector.file_changed(app_py)
    assert report.unreachable == [b.id]
    assert report.stale_count == 1
    assert store.get(b.id).stale is True


def test_file_changed_only_checks_owned_bookmarks(store, reader, workspace, app_py):
    detector = StalenessDetector(store, reader)
    util = workspace / "src" / "util.py"
    in_app = store.add(Location(app_py, 0), roots=[workspace])
    in_util = store.add(Location(util, 0), roots=[workspace])
    util.write_text("def renamed():\n")
    app_py.write_text("changed\n")

    report = detector.file_changed(app_py)
    assert report.checked == 1
    assert store.get(in_app.id).stale is True
    assert store.get(in_util.id).stale is False


def test_check_all_reads_each_file_once(store, app_py, workspace):
    util = workspace / "src" / "util.py"
    files = {app_py: "a\nb\nc\n", util: "x\n"}
    counting = CountingReader(files)
    for line in range(3):
        store.add(Location(app_py, line), roots=[workspace])
    store.add(Location(util, 0), roots=[workspace])

    report = StalenessDetector(store, counting).check_all()
    assert report.checked == 4
    assert counting.reads == {app_py: 1, util: 1}
