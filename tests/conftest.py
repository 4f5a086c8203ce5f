from pathlib import Path

import pytest

from linemark.config import Settings
from linemark.documents import FileDocumentReader
from linemark.models import Bookmark
from linemark.session import BookmarkSession
from linemark.storage import MemoryStorage
from linemark.store import BookmarkStore


def make_bookmark(id="b1", file_path="src/app.py", line=0, **kwargs):
    return Bookmark(id=id, file_path=file_path, line=line, **kwargs)


@pytest.fixture
def workspace(tmp_path):
    """A workspace root with two small source files."""
    root = tmp_path / "ws"
    (root / "src").mkdir(parents=True)
    (root / "src" / "app.py").write_text("import os\n\ndef main():\n    return 1\n")
    (root / "src" / "util.py").write_text("def helper():\n    pass\n")
    return root.resolve()


@pytest.fixture
def reader():
    return FileDocumentReader()


@pytest.fixture
def store(reader):
    return BookmarkStore(reader)


@pytest.fixture
def settings():
    return Settings({"save_delay": 0})


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def session(settings, storage, workspace):
    return BookmarkSession(settings, storage, roots=[workspace])


@pytest.fixture
def app_py(workspace) -> Path:
    return workspace / "src" / "app.py"
