import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Mapping, Optional

from dotenv import load_dotenv

from .exceptions import ConfigurationError

APPFILE_LOCATIONS = (Path("fastlane") / "Appfile", Path("Appfile"))
APPFILE_LINE = re.compile(r'^\s*(\w+)\s*\(?\s*["\']([^"\']*)["\']')

TRUE_VALUES = {'1', 'true', 'yes', 'on'}


@dataclass
class Settings:
    previews_path: Optional[str] = None
    skip_locales: List[str] = field(default_factory=list)
    regenerate_posters: bool = False
    platform: str = 'ios'
    username: Optional[str] = None
    app_identifier: Optional[str] = None
    team_id: Optional[str] = None
    api_key_id: Optional[str] = None
    api_issuer_id: Optional[str] = None
    api_key_path: Optional[str] = None

    def require(self, *names: str):
        missing = [name for name in names if not getattr(self, name)]
        if missing:
            raise ConfigurationError(f"Missing settings: {', '.join(missing)}")


def parse_skip_locales(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [code.strip() for code in value.split(',') if code.strip()]


def parse_bool(value: Optional[str]) -> bool:
    return bool(value) and value.strip().lower() in TRUE_VALUES


def read_appfile(locations: Iterable[Path] = APPFILE_LOCATIONS) -> dict:
    """
    Reads ``apple_id``, ``app_identifier`` and ``team_id`` from a fastlane
    Appfile, the place these normally live for a fastlane-managed app.
    Only the plain ``key "value"`` form is understood.
    """
    for location in locations:
        location = Path(location)
        if not location.is_file():
            continue
        values = {}
        for line in location.read_text(encoding='utf-8').splitlines():
            match = APPFILE_LINE.match(line)
            if match and match.group(1) not in values:
                values[match.group(1)] = match.group(2)
        return values
    return {}


def load_settings(env: Optional[Mapping[str, str]] = None,
                  appfile: Optional[Iterable[Path]] = None) -> Settings:
    if env is None:
        load_dotenv()
        env = os.environ
    appfile_values = read_appfile(APPFILE_LOCATIONS if appfile is None else appfile)

    return Settings(
        previews_path=env.get("UPLOAD_APP_PREVIEWS_PREVIEWS_PATH"),
        skip_locales=parse_skip_locales(env.get("UPLOAD_APP_PREVIEWS_SKIP_LANGS")),
        regenerate_posters=parse_bool(env.get("UPLOAD_APP_PREVIEWS_REGENERATE_POSTERS")),
        platform=env.get("UPLOAD_APP_PREVIEWS_PLATFORM") or 'ios',
        username=env.get("FASTLANE_USER") or env.get("APPLE_ID") or appfile_values.get("apple_id"),
        app_identifier=env.get("APP_IDENTIFIER") or appfile_values.get("app_identifier"),
        team_id=env.get("FASTLANE_TEAM_ID") or appfile_values.get("team_id"),
        api_key_id=env.get("APP_STORE_CONNECT_API_KEY_ID"),
        api_issuer_id=env.get("APP_STORE_CONNECT_API_ISSUER_ID"),
        api_key_path=env.get("APP_STORE_CONNECT_API_KEY_PATH"),
    )
