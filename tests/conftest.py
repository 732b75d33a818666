import json
import pytest
from pathlib import Path

from takeout_fixer.metadata.writer import MetadataWriter
from takeout_fixer.models import WriteResult


def write_sidecar(path: Path, title=None, taken=None, creation=None, geo=None, geo_exif=None):
    """Writes a Takeout-style sidecar. Timestamps are unix seconds."""
    data = {}
    if title is not None:
        data["title"] = title
    if taken is not None:
        data["photoTakenTime"] = {"timestamp": str(int(taken)), "formatted": ""}
    if creation is not None:
        data["creationTime"] = {"timestamp": str(int(creation)), "formatted": ""}
    if geo is not None:
        data["geoData"] = {"latitude": geo[0], "longitude": geo[1], "altitude": geo[2] if len(geo) > 2 else 0.0}
    if geo_exif is not None:
        data["geoDataExif"] = {"latitude": geo_exif[0], "longitude": geo_exif[1], "altitude": 0.0}
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def touch(path: Path, data: bytes = b"data"):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path


class FakeWriter(MetadataWriter):
    """Records every invocation; fails batches and/or named files on demand."""
    def __init__(self, fail_batches=False, fail_paths=()):
        self.fail_batches = fail_batches
        self.fail_paths = set(fail_paths)
        self.batch_calls = []
        self.single_calls = []

    def write_batch(self, tasks):
        self.batch_calls.append(list(tasks))
        ok = not self.fail_batches and not any(t.dest_path in self.fail_paths for t in tasks)
        return WriteResult(success=ok, stderr="" if ok else "batch failed")

    def write_one(self, task):
        self.single_calls.append(task)
        ok = task.dest_path not in self.fail_paths
        return WriteResult(success=ok, stderr="" if ok else "file failed")


@pytest.fixture
def takeout(tmp_path):
    """Empty source root inside tmp_path."""
    root = tmp_path / "Takeout"
    root.mkdir()
    return root


@pytest.fixture
def fake_writer():
    return FakeWriter()
