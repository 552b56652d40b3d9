import os
import re
from pathlib import Path
from typing import Dict, Iterable, Tuple

import ffmpeg
from rich.console import Console
from rich.progress import Progress

from .exceptions import InvalidTimestampError, PosterGenerationError, UnknownDeviceError
from .models import UploadRecord

console = Console()

TIMESTAMP_PATTERN = re.compile(r'^\d{2}\.\d{2}$')

# Landscape (width, height) per device type; swapped for portrait videos.
PREVIEW_RESOLUTIONS: Dict[str, Tuple[int, int]] = {
    'iphone4': (1136, 640),
    'iphone6': (1334, 750),
    'iphone6Plus': (1920, 1080),
    'iphone58': (1920, 886),
    'iphone65': (1920, 886),
    'ipad': (1200, 900),
    'ipad105': (1600, 1200),
    'ipadPro': (1600, 1200),
    'ipadPro129': (1600, 1200),
    'appleTV': (1920, 1080),
    'desktop': (1920, 1080),
}


def validate_timestamp(timestamp) -> str:
    if not isinstance(timestamp, str) or not TIMESTAMP_PATTERN.match(timestamp):
        raise InvalidTimestampError(timestamp)
    return timestamp


def timestamp_to_seconds(timestamp: str) -> int:
    """Converts an ``mm.ss`` timestamp to an offset in seconds."""
    minutes, seconds = validate_timestamp(timestamp).split('.')
    return int(minutes) * 60 + int(seconds)


def preview_resolution_for(device_type: str, is_portrait: bool) -> Tuple[int, int]:
    try:
        width, height = PREVIEW_RESOLUTIONS[device_type]
    except KeyError:
        raise UnknownDeviceError(device_type) from None
    return (height, width) if is_portrait else (width, height)


class PosterGenerator:
    def is_portrait(self, video_path: Path) -> bool:
        """
        Probes the first video stream. Rotated streams (phone recordings carry a
        90/270 degree rotation) are judged by their displayed orientation.
        """
        try:
            probe = ffmpeg.probe(str(video_path))
        except ffmpeg.Error as e:
            raise PosterGenerationError(f"Error probing {video_path}: {_stderr(e)}") from e

        video_stream = next((stream for stream in probe['streams'] if stream['codec_type'] == 'video'), None)
        if not video_stream:
            raise PosterGenerationError(f"No video stream found in {video_path}")

        width = int(video_stream['width'])
        height = int(video_stream['height'])
        if _rotation(video_stream) % 180 == 90:
            width, height = height, width
        return height > width

    def grab_frame(self, video_path: Path, timestamp: str, resolution: Tuple[int, int], poster_path: Path):
        """
        Extracts the frame at ``timestamp`` scaled and cropped to ``resolution``.
        The frame is written next to the poster first and then moved into place,
        so a failed grab never leaves a half-written poster behind.
        """
        width, height = resolution
        offset = timestamp_to_seconds(timestamp)
        tmp_path = poster_path.with_name(f".{poster_path.stem}.tmp{poster_path.suffix}")

        try:
            (
                ffmpeg
                .input(str(video_path), ss=offset)
                .video.filter('scale', width, height, force_original_aspect_ratio='increase')
                .filter('crop', width, height)
                .output(str(tmp_path), vframes=1, **{'q:v': 2})
                .overwrite_output()
                .run(quiet=True)
            )
        except ffmpeg.Error as e:
            if tmp_path.exists():
                tmp_path.unlink()
            raise PosterGenerationError(f"Error grabbing frame from {video_path}: {_stderr(e)}") from e

        if not tmp_path.exists():
            raise PosterGenerationError(f"No frame at {timestamp} in {video_path}")
        os.replace(tmp_path, poster_path)

    def ensure_posters(self, records: Iterable[UploadRecord], force: bool = False) -> int:
        """
        Generates a poster for every record that has none yet (or all of them when
        ``force`` is set). Stops at the first record with a malformed timestamp.
        Returns the number of posters written.
        """
        pending = [r for r in records if force or not r.poster_path.is_file()]
        if not pending:
            return 0

        generated = 0
        with Progress() as progress:
            task = progress.add_task("Generating posters...", total=len(pending))
            for record in pending:
                validate_timestamp(record.timestamp)
                is_portrait = self.is_portrait(record.video_path)
                resolution = preview_resolution_for(record.device_type, is_portrait)
                self.grab_frame(record.video_path, record.timestamp, resolution, record.poster_path)
                generated += 1
                progress.console.print(f"[green]Generated poster: {record.poster_path}[/green]")
                progress.advance(task)

        return generated


def _rotation(stream: dict) -> int:
    rotate = stream.get('tags', {}).get('rotate')
    if rotate is None:
        rotate = next((sd['rotation'] for sd in stream.get('side_data_list', []) if 'rotation' in sd), 0)
    try:
        return abs(int(float(rotate)))
    except (TypeError, ValueError):
        return 0


def _stderr(error: ffmpeg.Error) -> str:
    return error.stderr.decode('utf8') if error.stderr else str(error)
