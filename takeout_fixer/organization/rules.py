import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from .. import config
from ..models import Apply, CorrectionDecision, GeoPoint, ReconciledMetadata, Skip


def _valid(geo: Optional[GeoPoint]) -> bool:
    return geo is not None and geo.is_valid()


class Reconciler:
    """
    Decides, per matched pair, what gets written back into the media file.

    Timestamp policy:
      - overwrite (default): the sidecar timestamp always wins.
      - keep-close: pass keep_within; an embedded timestamp that is within
        that distance of the sidecar's is left alone.
    """

    def __init__(self,
                 recent_window: timedelta = config.RECENT_UPLOAD_WINDOW,
                 keep_within: Optional[timedelta] = None,
                 now: Callable[[], datetime] = datetime.now):
        self.recent_window = recent_window
        self.keep_within = keep_within
        self.now = now

    def decide(self,
               media_timestamp: Optional[datetime],
               media_geo: Optional[GeoPoint],
               sidecar_taken: Optional[datetime],
               sidecar_creation: Optional[datetime],
               sidecar_geo: Optional[GeoPoint]) -> CorrectionDecision:
        sidecar_ts = sidecar_taken or sidecar_creation
        used_creation = sidecar_taken is None and sidecar_creation is not None

        # Never overwrite a valid embedded coordinate
        geo = sidecar_geo if not _valid(media_geo) and _valid(sidecar_geo) else None

        if sidecar_ts is None:
            if media_timestamp is None:
                return Skip("no timestamp in media or sidecar")
            if geo is not None:
                return Apply(media_timestamp, geo)
            return Skip("sidecar has no timestamp", is_error=False)

        if media_timestamp is None and abs(self.now() - sidecar_ts) <= self.recent_window:
            return Skip(f"no embedded timestamp and sidecar time {sidecar_ts} looks like a recent upload")

        if (self.keep_within is not None and media_timestamp is not None
                and abs(media_timestamp - sidecar_ts) <= self.keep_within):
            if geo is not None:
                return Apply(media_timestamp, geo)
            return Skip("embedded timestamp already agrees with sidecar", is_error=False)

        return Apply(sidecar_ts, geo, used_creation_time=used_creation)

    def reconcile(self, meta: ReconciledMetadata) -> CorrectionDecision:
        decision = self.decide(
            meta.media_timestamp,
            meta.media_geo,
            meta.sidecar_taken_time,
            meta.sidecar_creation_time,
            meta.sidecar_geo,
        )

        if isinstance(decision, Apply):
            meta.target_timestamp = decision.timestamp
            if decision.used_creation_time:
                logging.info(f"{meta.media_path.name}: no photoTakenTime, using sidecar creationTime {decision.timestamp}")
            logging.debug(
                f"{meta.media_path.name}: timestamp {meta.media_timestamp} -> {decision.timestamp}"
                f"{' with GPS' if decision.geo else ''}"
            )
        elif decision.is_error:
            logging.error(f"Skipping {meta.media_path}: {decision.reason}")
        else:
            logging.info(f"Keeping {meta.media_path.name}: {decision.reason}")
        return decision
