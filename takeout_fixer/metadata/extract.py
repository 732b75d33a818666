import json
import logging
import re
import subprocess
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import exifread
from pymediainfo import MediaInfo

from .. import config
from ..exceptions import MetadataExtractionError
from ..models import GeoPoint, MediaRecord

# ISO 6709 as written by phones into QuickTime: "+51.5007-000.1246+012.000/"
ISO6709_RE = re.compile(r'^(?P<lat>[+-]\d+(?:\.\d+)?)(?P<lon>[+-]\d+(?:\.\d+)?)(?P<alt>[+-]\d+(?:\.\d+)?)?')


def is_plausible_date(dt: Optional[datetime]) -> bool:
    """Rejects container/camera defaults and dates outside a sane range."""
    if dt is None:
        return False
    if dt.date() in config.PLACEHOLDER_DATES:
        return False
    return config.MIN_VALID_YEAR <= dt.year <= datetime.now().year + 1


class MetadataExtractor:
    """
    Reads the embedded capture timestamp and GPS coordinate of a media file.

    Strategies:
      - Images: 'exifread' -> falls back to 'exiftool'.
      - Video: 'pymediainfo' -> falls back to 'exiftool' -> file mtime.
    """

    def extract(self, record: MediaRecord) -> Tuple[Optional[datetime], Optional[str], Optional[GeoPoint]]:
        """
        Returns:
            (timestamp, timestamp_source, geo); source is 'embedded' or 'filesystem'
        """
        if record.kind == 'image':
            dt, geo = self.get_image_metadata(record.path)
        elif record.kind == 'video':
            dt, geo = self.get_video_metadata(record.path)
        else:
            return None, None, None

        if dt is not None:
            return dt, 'embedded', geo

        if record.kind == 'video':
            fs_dt = self._filesystem_date(record.path)
            if fs_dt is not None:
                logging.debug(f"Using filesystem time for {record.path}")
                return fs_dt, 'filesystem', geo

        return None, None, geo

    def get_image_metadata(self, path: Path) -> Tuple[Optional[datetime], Optional[GeoPoint]]:
        try:
            with path.open('rb') as f:
                # details=False speeds up processing significantly
                tags = exifread.process_file(f, details=False)

            dt = self._parse_exif_date(tags)
            geo = self._parse_exif_gps(tags)
            if dt or geo:
                return dt, geo
        except Exception as e:
            logging.warning(f"ExifRead failed for {path}: {e}")

        try:
            return self._extract_exiftool(path)
        except MetadataExtractionError as e:
            logging.debug(str(e))
        return None, None

    def get_video_metadata(self, path: Path) -> Tuple[Optional[datetime], Optional[GeoPoint]]:
        # Strategy 1: MediaInfo
        try:
            dt, geo = self._extract_mediainfo(path)
            if dt or geo:
                return dt, geo
        except Exception as e:
            logging.debug(f"MediaInfo failed for {path}: {e}")

        # Strategy 2: ExifTool (requires system install)
        try:
            return self._extract_exiftool(path)
        except MetadataExtractionError as e:
            # Debug only, the tool may simply not be installed
            logging.debug(str(e))
        return None, None

    # --- Internal Extraction Helpers ---

    def _extract_mediainfo(self, path: Path) -> Tuple[Optional[datetime], Optional[GeoPoint]]:
        mi = MediaInfo.parse(str(path))
        dt = None
        geo = None

        for track in mi.tracks:
            if track.track_type != "General":
                continue

            for field in config.MEDIAINFO_DATE_FIELDS:
                val = getattr(track, field, None)
                if val:
                    candidate = self._parse_flexible_date(str(val))
                    if is_plausible_date(candidate):
                        dt = candidate
                        break

            for field in config.MEDIAINFO_LOCATION_FIELDS:
                val = getattr(track, field, None)
                if val:
                    geo = parse_iso6709(str(val))
                    if geo:
                        break
        return dt, geo

    def _extract_exiftool(self, path: Path) -> Tuple[Optional[datetime], Optional[GeoPoint]]:
        # -j = JSON output, -n = numeric values (signed decimal GPS)
        cmd = [config.EXIFTOOL_BINARY, "-j", "-n", str(path)]
        try:
            out = subprocess.check_output(cmd, stderr=subprocess.DEVNULL, text=True,
                                          timeout=config.EXIFTOOL_TIMEOUT)
            data_list = json.loads(out)
        except (OSError, subprocess.SubprocessError, ValueError) as e:
            raise MetadataExtractionError(f"ExifTool failed for {path}: {e}") from e

        if not data_list:
            return None, None
        tags: Dict[str, Any] = data_list[0]

        dt = None
        for field in config.EXIFTOOL_DATE_FIELDS:
            if tags.get(field):
                candidate = self._parse_flexible_date(str(tags[field]))
                if is_plausible_date(candidate):
                    dt = candidate
                    break

        geo = None
        if tags.get("GPSLatitude") is not None and tags.get("GPSLongitude") is not None:
            try:
                lat = float(tags["GPSLatitude"])
                lon = float(tags["GPSLongitude"])
                if str(tags.get("GPSLatitudeRef", "")).upper().startswith("S") and lat > 0:
                    lat = -lat
                if str(tags.get("GPSLongitudeRef", "")).upper().startswith("W") and lon > 0:
                    lon = -lon
                alt = tags.get("GPSAltitude")
                geo = GeoPoint(lat, lon, float(alt) if alt is not None else None)
            except (TypeError, ValueError):
                geo = None
        elif tags.get("GPSCoordinates"):
            # QuickTime Keys:GPSCoordinates with -n is "lat lon [alt]"
            parts = str(tags["GPSCoordinates"]).replace(",", " ").split()
            try:
                nums = [float(p) for p in parts]
                if len(nums) >= 2:
                    geo = GeoPoint(nums[0], nums[1], nums[2] if len(nums) > 2 else None)
            except ValueError:
                geo = None

        if geo is not None and not geo.is_valid():
            geo = None
        return dt, geo

    def _parse_exif_date(self, tags) -> Optional[datetime]:
        for tag in config.DATE_TAGS:
            if tag in tags:
                try:
                    # EXIF format is usually "YYYY:MM:DD HH:MM:SS"
                    dt_str = str(tags[tag]).strip().replace(':', '-', 2)
                    dt = datetime.strptime(dt_str[:19], "%Y-%m-%d %H:%M:%S")
                except ValueError:
                    continue
                if is_plausible_date(dt):
                    return dt
        return None

    def _parse_exif_gps(self, tags) -> Optional[GeoPoint]:
        if 'GPS GPSLatitude' not in tags or 'GPS GPSLongitude' not in tags:
            return None
        try:
            lat = _dms_to_degrees(tags['GPS GPSLatitude'].values)
            lon = _dms_to_degrees(tags['GPS GPSLongitude'].values)
        except (AttributeError, IndexError, TypeError, ZeroDivisionError):
            return None

        if str(tags.get('GPS GPSLatitudeRef', 'N')).strip().upper() == 'S':
            lat = -lat
        if str(tags.get('GPS GPSLongitudeRef', 'E')).strip().upper() == 'W':
            lon = -lon

        alt = None
        if 'GPS GPSAltitude' in tags:
            try:
                alt = _ratio_to_float(tags['GPS GPSAltitude'].values[0])
                if str(tags.get('GPS GPSAltitudeRef', '0')).strip() == '1':
                    alt = -alt
            except (AttributeError, IndexError, TypeError, ZeroDivisionError):
                alt = None

        geo = GeoPoint(lat, lon, alt)
        return geo if geo.is_valid() else None

    def _parse_flexible_date(self, dt_str: str) -> Optional[datetime]:
        """
        Handles various date formats (ISO, UTC suffixes, Exiftool quirks).
        Returns a naive local datetime.
        """
        if not dt_str:
            return None

        is_utc = "UTC" in dt_str
        clean = dt_str.replace("UTC", "").strip()
        dt = None

        # 1. ISO format (e.g. 2020-01-01T12:00:00)
        try:
            dt = datetime.fromisoformat(clean)
        except ValueError:
            pass

        # 2. EXIF style "YYYY:MM:DD HH:MM:SS", sub-seconds and zone dropped
        if dt is None:
            try:
                clean_exif = clean.replace(":", "-", 2)
                dt = datetime.strptime(clean_exif[:19], "%Y-%m-%d %H:%M:%S")
            except ValueError:
                return None

        if dt.tzinfo is not None:
            return dt.astimezone().replace(tzinfo=None)
        if is_utc:
            return _utc_to_local(dt)
        return dt

    def _filesystem_date(self, path: Path) -> Optional[datetime]:
        try:
            return datetime.fromtimestamp(path.stat().st_mtime)
        except OSError:
            return None


def parse_iso6709(value: str) -> Optional[GeoPoint]:
    m = ISO6709_RE.match(value.strip())
    if not m:
        return None
    alt = m.group('alt')
    geo = GeoPoint(float(m.group('lat')), float(m.group('lon')), float(alt) if alt else None)
    return geo if geo.is_valid() else None


def _ratio_to_float(r) -> float:
    if hasattr(r, 'num') and hasattr(r, 'den'):
        return r.num / r.den
    return float(r)


def _dms_to_degrees(values) -> float:
    d = _ratio_to_float(values[0])
    m = _ratio_to_float(values[1]) if len(values) > 1 else 0.0
    s = _ratio_to_float(values[2]) if len(values) > 2 else 0.0
    return d + m / 60.0 + s / 3600.0


def _utc_to_local(dt: datetime) -> datetime:
    return dt.replace(tzinfo=timezone.utc).astimezone().replace(tzinfo=None)
