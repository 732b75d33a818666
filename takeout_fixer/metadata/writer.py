"""
Writers that push corrected timestamps and coordinates into media files.
"""
import abc
import logging
import os
import subprocess
import tempfile
from typing import List, Optional, Sequence

from .. import config
from ..exceptions import MetadataWriteError
from ..models import CorrectionTask, GeoPoint, WriteResult


class MetadataWriter(abc.ABC):
    """
    Applies CorrectionTasks to files on disk.

    Implementations never raise for tool failures; they report them through
    the returned WriteResult so callers can retry.
    """

    @abc.abstractmethod
    def write_batch(self, tasks: Sequence[CorrectionTask]) -> WriteResult:
        """One invocation covering every task in the batch."""

    @abc.abstractmethod
    def write_one(self, task: CorrectionTask) -> WriteResult:
        """One invocation for a single file."""


def build_tag_args(timestamp, kind: str, geo: Optional[GeoPoint]) -> List[str]:
    stamp = timestamp.strftime(config.EXIFTOOL_DATE_FORMAT)
    tags = config.VIDEO_DATE_TAGS if kind == 'video' else config.IMAGE_DATE_TAGS
    args = [f"-{tag}={stamp}" for tag in tags]

    if geo is None:
        return args

    if kind == 'video':
        coords = f"{geo.latitude}, {geo.longitude}"
        if geo.altitude is not None:
            coords += f", {geo.altitude}"
        args.append(f"-Keys:GPSCoordinates={coords}")
    else:
        args.extend([
            f"-GPSLatitude={abs(geo.latitude)}",
            f"-GPSLatitudeRef={'N' if geo.latitude >= 0 else 'S'}",
            f"-GPSLongitude={abs(geo.longitude)}",
            f"-GPSLongitudeRef={'E' if geo.longitude >= 0 else 'W'}",
        ])
        if geo.altitude is not None:
            args.extend([
                f"-GPSAltitude={abs(geo.altitude)}",
                f"-GPSAltitudeRef={'Above Sea Level' if geo.altitude >= 0 else 'Below Sea Level'}",
            ])
    return args


class ExifToolWriter(MetadataWriter):
    """
    Writes tags with the exiftool command line utility.

    A batch whose tasks all carry the same values is one broadcast command.
    Otherwise the batch goes through an argfile with one -execute section per
    file, so per-file values still cost a single process start.
    """

    def __init__(self, binary: str = config.EXIFTOOL_BINARY, timeout: int = config.EXIFTOOL_TIMEOUT):
        self.binary = binary
        self.timeout = timeout

    def write_one(self, task: CorrectionTask) -> WriteResult:
        cmd = [self.binary] + config.EXIFTOOL_BASE_ARGS \
            + build_tag_args(task.timestamp, task.kind, task.geo) + [str(task.dest_path)]
        return self._safe_run(cmd)

    def write_batch(self, tasks: Sequence[CorrectionTask]) -> WriteResult:
        if not tasks:
            return WriteResult(success=True)
        if len(tasks) == 1:
            return self.write_one(tasks[0])

        first = tasks[0]
        if all((t.timestamp, t.geo, t.kind) == (first.timestamp, first.geo, first.kind) for t in tasks):
            cmd = [self.binary] + config.EXIFTOOL_BASE_ARGS \
                + build_tag_args(first.timestamp, first.kind, first.geo) \
                + [str(t.dest_path) for t in tasks]
            return self._safe_run(cmd)

        return self._write_argfile(tasks)

    def _write_argfile(self, tasks: Sequence[CorrectionTask]) -> WriteResult:
        with tempfile.NamedTemporaryFile(
            mode="w",
            prefix=f"exiftool_{os.getpid()}_",
            suffix=".args",
            encoding="utf-8",
            delete=False,
        ) as argfile:
            argfile_path = argfile.name
            for task in tasks:
                for arg in config.EXIFTOOL_BASE_ARGS + build_tag_args(task.timestamp, task.kind, task.geo):
                    argfile.write(f"{arg}\n")
                argfile.write(f"{task.dest_path}\n")
                argfile.write("-execute\n")

        try:
            return self._safe_run([self.binary, "-@", argfile_path])
        finally:
            try:
                os.unlink(argfile_path)
            except OSError:
                logging.debug(f"Could not remove argfile {argfile_path}")

    def _safe_run(self, cmd: List[str]) -> WriteResult:
        try:
            return self._run(cmd)
        except MetadataWriteError as e:
            logging.error(str(e))
            return WriteResult(success=False, stderr=str(e))

    def _run(self, cmd: List[str]) -> WriteResult:
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=False,
                stdin=subprocess.DEVNULL,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            raise MetadataWriteError(f"{self.binary} not found on PATH") from e
        except subprocess.TimeoutExpired as e:
            raise MetadataWriteError(f"{self.binary} timed out after {self.timeout}s") from e
        except OSError as e:
            raise MetadataWriteError(f"Could not run {self.binary}: {e}") from e

        if result.returncode != 0:
            logging.debug(f"{self.binary} exited with {result.returncode}: {result.stderr.strip()}")
        return WriteResult(success=result.returncode == 0, stdout=result.stdout, stderr=result.stderr)
