"""Interfaces the upload stage expects from the remote app store service."""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol


@dataclass(frozen=True)
class Credentials:
    username: str
    app_identifier: str
    platform: str = 'ios'
    team_id: Optional[str] = None


class EditVersion(Protocol):
    """An editable draft of the store listing for one platform."""

    def upload_trailer(self, video_path: Path, order: int, locale: str, device_type: str,
                       timestamp: str, poster_path: Path) -> None: ...

    def save(self) -> None: ...


class Application(Protocol):
    def edit_version(self, platform: str) -> EditVersion: ...


class StoreService(Protocol):
    def login(self, username: str) -> None: ...

    def select_team(self, team_id: Optional[str] = None) -> None: ...

    def find_application(self, app_identifier: str) -> Application: ...
