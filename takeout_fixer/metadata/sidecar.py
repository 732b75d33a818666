import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from ..exceptions import SidecarParseError
from ..models import GeoPoint, SidecarRecord


def read_sidecar(path: Path) -> SidecarRecord:
    """
    Decodes a Takeout JSON sidecar.

    Unix timestamps become naive local datetimes. Missing or malformed
    sub-objects are treated as absent rather than failing the whole file.

    Raises:
        SidecarParseError: the file cannot be read or is not a JSON object.
    """
    try:
        with path.open('r', encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise SidecarParseError(f"Cannot decode sidecar {path}: {e}") from e

    if not isinstance(data, dict):
        raise SidecarParseError(f"Sidecar {path} is not a JSON object")

    title = data.get('title')
    if not isinstance(title, str) or not title.strip():
        title = None

    return SidecarRecord(
        path=path,
        title=title,
        photo_taken_time=_parse_timestamp(data.get('photoTakenTime'), path),
        creation_time=_parse_timestamp(data.get('creationTime'), path),
        geo=_parse_geo(data.get('geoData')),
        geo_exif=_parse_geo(data.get('geoDataExif')),
    )


def _parse_timestamp(node: Any, path: Path) -> Optional[datetime]:
    if not isinstance(node, dict):
        return None
    raw = node.get('timestamp')
    if raw is None or raw == "":
        return None
    try:
        seconds = int(raw)
    except (TypeError, ValueError):
        logging.debug(f"Unparseable timestamp {raw!r} in {path}")
        return None
    if seconds <= 0:
        return None
    try:
        return datetime.fromtimestamp(seconds)
    except (OverflowError, OSError, ValueError):
        logging.debug(f"Out of range timestamp {raw!r} in {path}")
        return None


def _parse_geo(node: Optional[Dict[str, Any]]) -> Optional[GeoPoint]:
    if not isinstance(node, dict):
        return None
    try:
        lat = float(node['latitude'])
        lon = float(node['longitude'])
    except (KeyError, TypeError, ValueError):
        return None

    alt = node.get('altitude')
    try:
        alt = float(alt) if alt is not None else None
    except (TypeError, ValueError):
        alt = None

    point = GeoPoint(latitude=lat, longitude=lon, altitude=alt)
    # Takeout writes 0.0/0.0 when it has no location
    return point if point.is_valid() else None
