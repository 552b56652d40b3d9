from typing import Iterable, Optional

from rich.console import Console

from .app_store_connect import AppStoreConnect
from .config import Settings, load_settings
from .models import UploadRecord, UploadSession
from .poster import PosterGenerator
from .scanner import Scanner
from .store import Credentials, StoreService

console = Console()


def crosses_locale_boundary(session: UploadSession, record: UploadRecord) -> bool:
    return session.previous_locale is not None and session.previous_locale != record.locale


def upload(records: Iterable[UploadRecord], credentials: Credentials, store: StoreService) -> int:
    """
    Uploads the records in the order given, saving the open edit version each
    time the locale changes and once more at the end. Any store error stops
    the run where it happened; the version being filled at that point is not
    saved.
    """
    console.print(f"Login to App Store Connect ({credentials.username})")
    store.login(credentials.username)
    store.select_team(credentials.team_id)
    console.print("Login successful")

    application = store.find_application(credentials.app_identifier)
    session = UploadSession(
        username=credentials.username,
        application=application,
        version=application.edit_version(credentials.platform),
    )

    console.print("Uploading videos")
    for record in records:
        if crosses_locale_boundary(session, record):
            console.print(f"[green]Completed lang {session.previous_locale}[/green]")
            session.version.save()
            session.version = application.edit_version(credentials.platform)

        console.print(f"Uploading app preview {record.video_path} for lang {record.locale}...")
        session.version.upload_trailer(
            record.video_path,
            record.order,
            record.locale,
            record.device_type,
            record.timestamp,
            record.poster_path,
        )
        session.uploaded += 1
        console.print("[green]Done uploading app preview[/green]")
        session.previous_locale = record.locale

    console.print("Final save")
    session.version.save()
    console.print(f"[bold green]Uploaded {session.uploaded} videos[/bold green]")
    return session.uploaded


class Orchestrator:
    def __init__(self, settings: Optional[Settings] = None, store: Optional[StoreService] = None,
                 scanner: Optional[Scanner] = None, poster_generator: Optional[PosterGenerator] = None):
        self.settings = settings if settings else load_settings()
        self.store = store
        self.scanner = scanner
        self.poster_generator = poster_generator if poster_generator else PosterGenerator()

    def collect(self):
        """Scan the previews path and make sure every video has a poster."""
        self.settings.require('previews_path')
        if not self.scanner:
            self.scanner = Scanner(self.settings.previews_path)

        console.print("[cyan]Collecting videos and generating posters[/cyan]")
        console.print(f"\tPreviews path: {self.settings.previews_path}")
        console.print(f"\tSkip langs: {self.settings.skip_locales}")
        console.print(f"\tRegenerate posters: {self.settings.regenerate_posters}")

        records = self.scanner.scan(self.settings.skip_locales)
        console.print(f"Found {len(records)} app preview videos.")
        self.poster_generator.ensure_posters(records, self.settings.regenerate_posters)
        return records

    def run(self, scan_only: bool = False) -> int:
        records = self.collect()
        if scan_only:
            return 0

        self.settings.require('username', 'app_identifier')
        if not self.store:
            self.store = AppStoreConnect.from_settings(self.settings)

        credentials = Credentials(
            username=self.settings.username,
            app_identifier=self.settings.app_identifier,
            platform=self.settings.platform,
            team_id=self.settings.team_id,
        )
        return upload(records, credentials, self.store)
