"""
Recording Store for drag teach sessions

Persists teaching samples as a JSON array, one entry per sample:

    [{"timestamped": 1712345678901, "joints": [0.0, 1.57, -0.5, 0.0]}, ...]

Timestamps are wall clock milliseconds, joints are radians. Entries are
written in chronological order.
"""

import json
import logging
import os
from pathlib import Path
from typing import Iterable, List, Union

from roarm.constants import (
    DEFAULT_RECORDINGS_DIR,
    RECORDING_JOINTS_KEY,
    RECORDING_TIMESTAMP_KEY,
)
from roarm.errors import RecordingError
from roarm.state import Sample

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class RecordingStore:
    """Reads and writes recordings below a base directory."""

    def __init__(self, recordings_dir: PathLike = DEFAULT_RECORDINGS_DIR):
        self.recordings_dir = Path(recordings_dir)

    def resolve(self, filename: PathLike) -> Path:
        """
        Locate a recording inside recordings_dir.

        Absolute paths are accepted only when they point below recordings_dir.

        Raises:
            RecordingError: The path escapes recordings_dir
        """
        base = self.recordings_dir.resolve()
        target = (base / filename).resolve()
        try:
            relative = target.relative_to(base)
        except ValueError:
            raise RecordingError(f"Recording {filename} is outside {self.recordings_dir}") from None
        if not relative.parts:
            raise RecordingError(f"Recording name {filename!r} does not name a file")
        return self.recordings_dir / relative

    def ensure_writable(self, filename: PathLike) -> Path:
        """
        Check that a recording can be written before any samples are taken.

        Creates missing parent directories.

        Raises:
            RecordingError: The target cannot be written
        """
        path = self.resolve(filename)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise RecordingError(f"Could not create directory for recording {path}: {e}") from e

        if path.is_dir():
            raise RecordingError(f"Recording {path} is a directory")
        writable = os.access(path, os.W_OK) if path.exists() else os.access(path.parent, os.W_OK)
        if not writable:
            raise RecordingError(f"Recording {path} is not writable")
        return path

    def save(self, filename: PathLike, samples: Iterable[Sample]) -> Path:
        """
        Write samples to a recording file.

        Args:
            filename: Target file, relative to recordings_dir
            samples: Samples in any order; they are sorted by timestamp

        Returns:
            Path of the written file

        Raises:
            RecordingError: If the file cannot be written
        """
        ordered = sorted(samples, key=lambda s: s.timestamp_ms)
        entries = [
            {
                RECORDING_TIMESTAMP_KEY: int(sample.timestamp_ms),
                RECORDING_JOINTS_KEY: [float(j) for j in sample.joints_radians],
            }
            for sample in ordered
        ]

        path = self.resolve(filename)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, 'w') as f:
                json.dump(entries, f, indent=2)
        except OSError as e:
            logger.error(f"[Recording] Failed to save {path}: {e}")
            raise RecordingError(f"Could not write recording {path}: {e}") from e

        logger.info(f"[Recording] Saved {len(entries)} samples to {path}")
        return path

    def load(self, filename: PathLike) -> List[Sample]:
        """
        Read a recording file.

        Raises:
            RecordingError: Missing file, invalid JSON or malformed entries
        """
        path = self.resolve(filename)
        try:
            with open(path, 'r') as f:
                data = json.load(f)
        except FileNotFoundError as e:
            raise RecordingError(f"Recording not found: {path}") from e
        except (OSError, ValueError) as e:
            raise RecordingError(f"Could not read recording {path}: {e}") from e

        if not isinstance(data, list):
            raise RecordingError(f"Recording {path} must contain a JSON array")

        samples = []
        for index, entry in enumerate(data):
            try:
                timestamp = entry[RECORDING_TIMESTAMP_KEY]
                joints = entry[RECORDING_JOINTS_KEY]
                if isinstance(timestamp, bool) or not isinstance(joints, list):
                    raise TypeError("bad field types")
                samples.append(Sample(int(timestamp), [float(j) for j in joints]))
            except (KeyError, TypeError, ValueError) as e:
                raise RecordingError(f"Malformed entry {index} in {path}: {entry!r}") from e

        logger.debug(f"[Recording] Loaded {len(samples)} samples from {path}")
        return samples

    def list_recordings(self) -> List[str]:
        """Names of the .json files in recordings_dir, sorted."""
        if not self.recordings_dir.is_dir():
            return []
        return sorted(p.name for p in self.recordings_dir.glob("*.json") if p.is_file())
