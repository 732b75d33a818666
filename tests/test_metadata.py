import os
import json
import pytest
from pathlib import Path
from datetime import datetime, timezone

from PIL import Image

import takeout_fixer.metadata.extract as extract_module
from takeout_fixer.metadata.extract import MetadataExtractor, is_plausible_date, parse_iso6709
from takeout_fixer.models import GeoPoint, MediaRecord

from conftest import touch


# Mock MediaInfo class structure
class MockTrack:
    def __init__(self, **kwargs):
        self.track_type = "General"
        for k, v in kwargs.items():
            setattr(self, k, v)


class MockMediaInfo:
    fields = {}

    def __init__(self, tracks):
        self.tracks = tracks

    @classmethod
    def parse(cls, path):
        return cls([MockTrack(**cls.fields)])


class FakeRatio:
    def __init__(self, num, den=1):
        self.num = num
        self.den = den


class FakeTag:
    def __init__(self, printable, values=None):
        self.printable = printable
        self.values = values

    def __str__(self):
        return self.printable


def no_exiftool(*args, **kwargs):
    raise FileNotFoundError("exiftool")


@pytest.fixture
def without_exiftool(monkeypatch):
    monkeypatch.setattr(extract_module.subprocess, "check_output", no_exiftool)


def make_jpeg(path: Path, date_str=None):
    img = Image.new("RGB", (10, 10), color="red")
    exif = Image.Exif()
    if date_str:
        exif[0x0132] = date_str  # DateTime
    img.save(path, "JPEG", exif=exif)
    return path


def test_image_date_from_real_exif(tmp_path, without_exiftool):
    p = make_jpeg(tmp_path / "a.jpg", "2019:05:04 03:02:01")

    dt, source, geo = MetadataExtractor().extract(MediaRecord(p, "image"))

    assert dt == datetime(2019, 5, 4, 3, 2, 1)
    assert source == "embedded"
    assert geo is None


def test_image_placeholder_date_is_absent(tmp_path, without_exiftool):
    p = make_jpeg(tmp_path / "a.jpg", "2000:01:01 00:00:00")

    dt, source, geo = MetadataExtractor().extract(MediaRecord(p, "image"))

    # Images never fall back to the filesystem time
    assert dt is None
    assert source is None


def test_image_gps_from_exifread(monkeypatch, tmp_path, without_exiftool):
    tags = {
        "EXIF DateTimeOriginal": FakeTag("2021:06:01 10:00:00"),
        "GPS GPSLatitude": FakeTag("", [FakeRatio(51), FakeRatio(30), FakeRatio(0)]),
        "GPS GPSLatitudeRef": FakeTag("N"),
        "GPS GPSLongitude": FakeTag("", [FakeRatio(0), FakeRatio(6), FakeRatio(0)]),
        "GPS GPSLongitudeRef": FakeTag("W"),
        "GPS GPSAltitude": FakeTag("", [FakeRatio(25, 2)]),
        "GPS GPSAltitudeRef": FakeTag("0"),
    }
    monkeypatch.setattr(extract_module.exifread, "process_file", lambda f, details=False: tags)
    p = touch(tmp_path / "a.jpg")

    dt, geo = MetadataExtractor().get_image_metadata(p)

    assert dt == datetime(2021, 6, 1, 10, 0, 0)
    assert geo.latitude == pytest.approx(51.5)
    assert geo.longitude == pytest.approx(-0.1)
    assert geo.altitude == pytest.approx(12.5)


def test_image_falls_back_to_exiftool(monkeypatch, tmp_path):
    monkeypatch.setattr(extract_module.exifread, "process_file", lambda f, details=False: {})
    payload = [{"CreateDate": "2018:07:08 09:10:11", "GPSLatitude": 48.8, "GPSLongitude": 2.3}]
    calls = []

    def fake_check_output(cmd, **kwargs):
        calls.append(cmd)
        return json.dumps(payload)

    monkeypatch.setattr(extract_module.subprocess, "check_output", fake_check_output)
    p = touch(tmp_path / "a.jpg")

    dt, geo = MetadataExtractor().get_image_metadata(p)

    assert dt == datetime(2018, 7, 8, 9, 10, 11)
    assert geo == GeoPoint(48.8, 2.3, None)
    assert calls[0][:3] == ["exiftool", "-j", "-n"]


def test_video_metadata_from_mediainfo(monkeypatch, tmp_path, without_exiftool):
    MockMediaInfo.fields = {
        "recorded_date": "UTC 2023-01-01 12:00:00",
        "xyz": "+51.5000-000.1000/",
    }
    monkeypatch.setattr(extract_module, "MediaInfo", MockMediaInfo)
    vid = touch(tmp_path / "test.mp4")

    dt, source, geo = MetadataExtractor().extract(MediaRecord(vid, "video"))

    expected = datetime(2023, 1, 1, 12, 0, 0, tzinfo=timezone.utc).astimezone().replace(tzinfo=None)
    assert dt == expected
    assert source == "embedded"
    assert geo == GeoPoint(51.5, -0.1, None)


def test_video_placeholder_date_skipped_for_next_field(monkeypatch, tmp_path, without_exiftool):
    MockMediaInfo.fields = {
        "recorded_date": "1904-01-01 00:00:00",
        "encoded_date": "2022-03-04 05:06:07",
    }
    monkeypatch.setattr(extract_module, "MediaInfo", MockMediaInfo)
    vid = touch(tmp_path / "test.mov")

    dt, geo = MetadataExtractor().get_video_metadata(vid)
    assert dt == datetime(2022, 3, 4, 5, 6, 7)


def test_video_falls_back_to_filesystem_time(monkeypatch, tmp_path, without_exiftool):
    MockMediaInfo.fields = {}
    monkeypatch.setattr(extract_module, "MediaInfo", MockMediaInfo)
    vid = touch(tmp_path / "test.mp4")
    mtime = datetime(2015, 8, 9, 10, 11, 12).timestamp()
    os.utime(vid, (mtime, mtime))

    dt, source, geo = MetadataExtractor().extract(MediaRecord(vid, "video"))

    assert dt == datetime(2015, 8, 9, 10, 11, 12)
    assert source == "filesystem"
    assert geo is None


def test_video_gps_coordinates_from_exiftool(monkeypatch, tmp_path):
    MockMediaInfo.fields = {}
    monkeypatch.setattr(extract_module, "MediaInfo", MockMediaInfo)
    payload = [{"CreationDate": "2020:01:01 10:00:00+01:00", "GPSCoordinates": "51.5 -0.1 10"}]
    monkeypatch.setattr(extract_module.subprocess, "check_output", lambda cmd, **kw: json.dumps(payload))
    vid = touch(tmp_path / "test.mp4")

    dt, geo = MetadataExtractor().get_video_metadata(vid)

    assert dt == datetime(2020, 1, 1, 10, 0, 0)
    assert geo == GeoPoint(51.5, -0.1, 10.0)


def test_other_kind_is_not_read(tmp_path):
    p = touch(tmp_path / "notes.txt")
    assert MetadataExtractor().extract(MediaRecord(p, "other")) == (None, None, None)


@pytest.mark.parametrize("dt,expected", [
    (datetime(2019, 5, 4, 3, 2, 1), True),
    (datetime(1970, 1, 1, 0, 0, 0), False),
    (datetime(1980, 1, 1, 12, 0, 0), False),
    (datetime(1904, 1, 1), False),
    (datetime(1985, 6, 1), False),
    (datetime(datetime.now().year + 2, 1, 2), False),
    (None, False),
])
def test_is_plausible_date(dt, expected):
    assert is_plausible_date(dt) is expected


def test_parse_iso6709():
    assert parse_iso6709("+48.8584+002.2945+035.000/") == GeoPoint(48.8584, 2.2945, 35.0)
    assert parse_iso6709("+00.0000+000.0000/") is None
    assert parse_iso6709("garbage") is None
