import subprocess
import pytest
from pathlib import Path
from datetime import datetime

import takeout_fixer.metadata.writer as writer_module
from takeout_fixer.metadata.writer import ExifToolWriter, build_tag_args
from takeout_fixer.models import CorrectionTask, GeoPoint

TS = datetime(2019, 7, 14, 9, 30, 0)


class FakeCompleted:
    def __init__(self, returncode=0, stdout="", stderr=""):
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


@pytest.fixture
def recorded_runs(monkeypatch):
    """Captures every exiftool command line plus the argfile body, if any."""
    runs = []

    def fake_run(cmd, **kwargs):
        argfile = None
        if "-@" in cmd:
            argfile = Path(cmd[cmd.index("-@") + 1]).read_text(encoding="utf-8")
        runs.append({"cmd": cmd, "argfile": argfile, "kwargs": kwargs})
        return FakeCompleted()

    monkeypatch.setattr(writer_module.subprocess, "run", fake_run)
    return runs


def task(name, ts=TS, kind="image", geo=None):
    return CorrectionTask(dest_path=Path("/dst") / name, timestamp=ts, kind=kind, geo=geo)


def test_image_tag_args_with_gps():
    args = build_tag_args(TS, "image", GeoPoint(-33.9, -151.2, -5.0))
    assert "-DateTimeOriginal=2019:07:14 09:30:00" in args
    assert "-CreateDate=2019:07:14 09:30:00" in args
    assert "-ModifyDate=2019:07:14 09:30:00" in args
    assert "-GPSLatitude=33.9" in args
    assert "-GPSLatitudeRef=S" in args
    assert "-GPSLongitude=151.2" in args
    assert "-GPSLongitudeRef=W" in args
    assert "-GPSAltitude=5.0" in args
    assert "-GPSAltitudeRef=Below Sea Level" in args


def test_video_tag_args_with_gps():
    args = build_tag_args(TS, "video", GeoPoint(51.5, -0.1))
    assert "-TrackCreateDate=2019:07:14 09:30:00" in args
    assert "-MediaModifyDate=2019:07:14 09:30:00" in args
    assert "-Keys:GPSCoordinates=51.5, -0.1" in args
    assert not any(a.startswith("-GPSLatitude") for a in args)


def test_write_one(recorded_runs):
    result = ExifToolWriter().write_one(task("a.jpg"))

    assert result.success
    cmd = recorded_runs[0]["cmd"]
    assert cmd[0] == "exiftool"
    assert cmd[1:4] == ["-overwrite_original", "-P", "-q"]
    assert cmd[-1] == str(Path("/dst/a.jpg"))
    assert recorded_runs[0]["kwargs"]["timeout"] > 0
    assert recorded_runs[0]["kwargs"]["stdin"] is subprocess.DEVNULL


def test_identical_batch_is_broadcast(recorded_runs):
    tasks = [task(f"{i}.jpg") for i in range(3)]

    ExifToolWriter().write_batch(tasks)

    assert len(recorded_runs) == 1
    cmd = recorded_runs[0]["cmd"]
    assert recorded_runs[0]["argfile"] is None
    assert cmd[-3:] == [str(t.dest_path) for t in tasks]
    assert cmd.count("-DateTimeOriginal=2019:07:14 09:30:00") == 1


def test_mixed_batch_uses_argfile_sections(recorded_runs):
    tasks = [task("a.jpg"), task("b.jpg", ts=datetime(2020, 1, 2, 3, 4, 5), geo=GeoPoint(48.8, 2.3))]

    ExifToolWriter().write_batch(tasks)

    assert len(recorded_runs) == 1
    body = recorded_runs[0]["argfile"]
    sections = [s for s in body.split("-execute\n") if s.strip()]
    assert len(sections) == 2
    assert "-DateTimeOriginal=2019:07:14 09:30:00" in sections[0]
    assert str(Path("/dst/a.jpg")) in sections[0]
    assert "-DateTimeOriginal=2020:01:02 03:04:05" in sections[1]
    assert "-GPSLatitude=48.8" in sections[1]
    assert "-overwrite_original" in sections[1]


def test_argfile_is_removed(recorded_runs):
    ExifToolWriter().write_batch([task("a.jpg"), task("b.jpg", ts=datetime(2020, 1, 1))])
    argfile = recorded_runs[0]["cmd"][-1]
    assert not Path(argfile).exists()


def test_nonzero_exit_is_failure(monkeypatch):
    monkeypatch.setattr(writer_module.subprocess, "run",
                        lambda cmd, **kw: FakeCompleted(returncode=1, stderr="Error: bad file"))
    result = ExifToolWriter().write_one(task("a.jpg"))
    assert not result.success
    assert "bad file" in result.stderr


def test_missing_exiftool_is_normal_failure(monkeypatch):
    def raise_missing(cmd, **kw):
        raise FileNotFoundError(cmd[0])

    monkeypatch.setattr(writer_module.subprocess, "run", raise_missing)
    result = ExifToolWriter(binary="definitely-not-exiftool").write_one(task("a.jpg"))
    assert not result.success
    assert "not found" in result.stderr


def test_timeout_is_normal_failure(monkeypatch):
    def raise_timeout(cmd, **kw):
        raise subprocess.TimeoutExpired(cmd, kw.get("timeout"))

    monkeypatch.setattr(writer_module.subprocess, "run", raise_timeout)
    result = ExifToolWriter(timeout=1).write_batch([task("a.jpg"), task("b.jpg")])
    assert not result.success
    assert "timed out" in result.stderr
