
import json
from pathlib import Path
from typing import Iterable, Iterator, List, Optional

from rich.console import Console

from .locales import LOCALES, METADATA_EXTENSION, METADATA_KEYS, POSTER_EXTENSION, VIDEO_EXTENSIONS
from .models import ScanOutcome, UploadRecord

console = Console()


class Scanner:
    def __init__(self, input_path: str, locales: Iterable[str] = LOCALES,
                 video_extensions: Iterable[str] = VIDEO_EXTENSIONS):
        self.input_path = Path(input_path)
        self.locales = tuple(locales)
        self.video_extensions = {ext.lower() for ext in video_extensions}

    def scan(self, skip_locales: Iterable[str] = ()) -> List[UploadRecord]:
        """
        Scan the locale directories under the input path for app preview videos.
        Records come out grouped by locale (in locale table order) and sorted by
        filename within each locale. Videos with missing or broken metadata are
        left out with a warning.
        """
        return [o.record for o in self.scan_outcomes(skip_locales) if not o.skipped]

    def scan_outcomes(self, skip_locales: Iterable[str] = ()) -> Iterator[ScanOutcome]:
        skip_locales = set(skip_locales)

        if not self.input_path.is_dir():
            console.print(f"[yellow]Previews path {self.input_path} does not exist.[/yellow]")
            return

        console.print(f"[cyan]Scanning directory: {self.input_path}[/cyan]")
        for locale in self.locales:
            locale_path = self.input_path / locale
            if not locale_path.is_dir():
                continue
            if locale in skip_locales:
                console.print(f"Skipping lang: {locale}")
                continue

            console.print(f"Lang dir found: {locale_path}")
            videos = sorted(
                (p for p in locale_path.iterdir()
                 if p.is_file() and p.suffix.lower() in self.video_extensions),
                key=lambda p: p.name,
            )
            seen_stems = set()
            for video_path in videos:
                if video_path.stem in seen_stems:
                    outcome = ScanOutcome(
                        video_path,
                        skip_reason=f"Duplicate video name, {video_path.name} shares its configuration and poster with another video",
                    )
                else:
                    seen_stems.add(video_path.stem)
                    outcome = self._scan_video(locale, video_path)
                if outcome.skipped:
                    console.print(f"[yellow]{outcome.skip_reason}[/yellow]")
                else:
                    console.print(f"Video found: {video_path}")
                yield outcome

    def _scan_video(self, locale: str, video_path: Path) -> ScanOutcome:
        metadata_path = video_path.with_suffix(METADATA_EXTENSION)
        if not metadata_path.is_file():
            return ScanOutcome(video_path, skip_reason=f"Missing configuration for video: {video_path.name}")

        metadata = self._load_metadata(metadata_path)
        if metadata is None:
            return ScanOutcome(video_path, skip_reason=f"Invalid video configuration: {metadata_path}")

        record = UploadRecord(
            locale=locale,
            device_type=metadata["device"],
            timestamp=metadata["timestamp"],
            order=metadata["order"],
            video_path=video_path,
            poster_path=video_path.with_suffix(POSTER_EXTENSION),
        )
        return ScanOutcome(video_path, record=record)

    @staticmethod
    def _load_metadata(metadata_path: Path) -> Optional[dict]:
        try:
            with open(metadata_path, 'r', encoding='utf-8') as f:
                metadata = json.load(f)
        except (OSError, ValueError):
            return None

        if not isinstance(metadata, dict) or any(key not in metadata for key in METADATA_KEYS):
            return None
        if not isinstance(metadata["device"], str) or not isinstance(metadata["timestamp"], str):
            return None
        # bool is an int subclass
        if not isinstance(metadata["order"], int) or isinstance(metadata["order"], bool):
            return None
        return metadata
