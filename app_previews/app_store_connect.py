"""App Store Connect REST API adapter for the upload stage."""

import hashlib
import json
import time
from base64 import urlsafe_b64encode
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

import requests
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature
from rich.console import Console

from .exceptions import (
    AppNotFoundError,
    AuthenticationError,
    ConfigurationError,
    EditVersionNotFoundError,
    StoreError,
    UnknownDeviceError,
)
from .poster import validate_timestamp

console = Console()

API_BASE = "https://api.appstoreconnect.apple.com"
TOKEN_AUDIENCE = "appstoreconnect-v1"
TOKEN_LIFETIME_SEC = 20 * 60  # Apple rejects tokens valid for longer than 20 minutes

EDITABLE_STATES = (
    "PREPARE_FOR_SUBMISSION",
    "DEVELOPER_REJECTED",
    "REJECTED",
    "METADATA_REJECTED",
    "INVALID_BINARY",
)

PLATFORMS = {
    'ios': 'IOS',
    'osx': 'MAC_OS',
    'macos': 'MAC_OS',
    'appletvos': 'TV_OS',
    'tvos': 'TV_OS',
}

PREVIEW_TYPES = {
    'iphone4': 'IPHONE_40',
    'iphone6': 'IPHONE_47',
    'iphone6Plus': 'IPHONE_55',
    'iphone58': 'IPHONE_58',
    'iphone65': 'IPHONE_65',
    'ipad': 'IPAD_97',
    'ipad105': 'IPAD_105',
    'ipadPro': 'IPAD_PRO_129',
    'ipadPro129': 'IPAD_PRO_3GEN_129',
    'appleTV': 'APPLE_TV',
    'desktop': 'DESKTOP',
}

MIME_TYPES = {
    '.mp4': 'video/mp4',
    '.mov': 'video/quicktime',
}


def _b64url(data: bytes) -> str:
    return urlsafe_b64encode(data).rstrip(b'=').decode('ascii')


def make_token(key_id: str, issuer_id: str, private_key: bytes, now: Optional[int] = None) -> str:
    """Mints an ES256 JWT for the App Store Connect API from a .p8 private key."""
    now = int(time.time()) if now is None else now
    header = {"alg": "ES256", "kid": key_id, "typ": "JWT"}
    payload = {"iss": issuer_id, "iat": now, "exp": now + TOKEN_LIFETIME_SEC, "aud": TOKEN_AUDIENCE}
    signing_input = ".".join(
        _b64url(json.dumps(segment, separators=(',', ':')).encode('utf-8'))
        for segment in (header, payload)
    )

    key = serialization.load_pem_private_key(private_key, password=None)
    if not isinstance(key, ec.EllipticCurvePrivateKey):
        raise ValueError("App Store Connect keys must be EC (P-256) private keys")

    # JWS wants the raw r || s form, not the DER encoding cryptography returns.
    r, s = decode_dss_signature(key.sign(signing_input.encode('ascii'), ec.ECDSA(hashes.SHA256())))
    signature = r.to_bytes(32, 'big') + s.to_bytes(32, 'big')
    return f"{signing_input}.{_b64url(signature)}"


def preview_type_for(device_type: str) -> str:
    try:
        return PREVIEW_TYPES[device_type]
    except KeyError:
        raise UnknownDeviceError(device_type) from None


def frame_time_code(timestamp: str) -> str:
    """``mm.ss`` -> ``mm:ss:00`` (minutes, seconds, frames)."""
    minutes, seconds = validate_timestamp(timestamp).split('.')
    return f"{minutes}:{seconds}:00"


def file_checksum(path: Path) -> str:
    digest = hashlib.md5()
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b''):
            digest.update(chunk)
    return digest.hexdigest()


def ranked_preview_ids(current_ids: List[str], staged: Dict[str, int]) -> List[str]:
    """
    Places each staged preview id at its 1-based ``order`` rank, keeping the
    relative order of everything else in the set.
    """
    ids = [i for i in current_ids if i not in staged]
    for preview_id, order in sorted(staged.items(), key=lambda item: item[1]):
        position = min(max(order - 1, 0), len(ids))
        ids.insert(position, preview_id)
    return ids


@dataclass
class StagedPreview:
    preview_id: str
    preview_set_id: str
    order: int
    checksum: str


class AppStoreConnect:
    def __init__(self, key_id: str, issuer_id: str, private_key: bytes,
                 session: Optional[requests.Session] = None, base_url: str = API_BASE):
        self.key_id = key_id
        self.issuer_id = issuer_id
        self.private_key = private_key
        self.session = session if session else requests.Session()
        self.base_url = base_url
        self.token = None
        self.team_id = None

    @classmethod
    def from_settings(cls, settings) -> "AppStoreConnect":
        if not (settings.api_key_id and settings.api_issuer_id and settings.api_key_path):
            raise ConfigurationError(
                "APP_STORE_CONNECT_API_KEY_ID, APP_STORE_CONNECT_API_ISSUER_ID and "
                "APP_STORE_CONNECT_API_KEY_PATH must be set to upload."
            )
        key_path = Path(settings.api_key_path).expanduser()
        if not key_path.is_file():
            raise ConfigurationError(f"API key file not found: {key_path}")
        return cls(settings.api_key_id, settings.api_issuer_id, key_path.read_bytes())

    def login(self, username: str):
        try:
            self.token = make_token(self.key_id, self.issuer_id, self.private_key)
        except (TypeError, ValueError) as e:
            raise AuthenticationError(f"Invalid API key {self.key_id}: {e}") from e

        try:
            users = self.get('/v1/users', params={'filter[username]': username})['data']
        except StoreError as e:
            if e.status in (401, 403):
                raise AuthenticationError(f"Login rejected for {username}: {e}", status=e.status) from e
            raise
        if not users:
            raise AuthenticationError(f"No App Store Connect user named {username}")

    def select_team(self, team_id: Optional[str] = None):
        # API keys belong to exactly one team, there is nothing to switch.
        self.team_id = team_id
        if team_id:
            console.print(f"Using team {team_id}")

    def find_application(self, app_identifier: str) -> "Application":
        apps = self.get('/v1/apps', params={'filter[bundleId]': app_identifier})['data']
        app = next((a for a in apps if a['attributes'].get('bundleId') == app_identifier), None)
        if not app:
            raise AppNotFoundError(f"Could not find app with bundle identifier {app_identifier}")
        return Application(self, app['id'])

    def request(self, method: str, path: str, **kwargs) -> dict:
        headers = {'Authorization': f'Bearer {self.token}'}
        response = self.session.request(method, self.base_url + path, headers=headers, **kwargs)
        _raise_for_status(response, f"{method} {path}")
        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    def get(self, path: str, **kwargs) -> dict:
        return self.request('GET', path, **kwargs)

    def post(self, path: str, **kwargs) -> dict:
        return self.request('POST', path, **kwargs)

    def patch(self, path: str, **kwargs) -> dict:
        return self.request('PATCH', path, **kwargs)

    def send_upload_operation(self, operation: dict, video_path: Path):
        """Sends one byte range of the video to the pre-signed URL Apple handed out."""
        with open(video_path, 'rb') as f:
            f.seek(operation['offset'])
            chunk = f.read(operation['length'])
        headers = {h['name']: h['value'] for h in operation.get('requestHeaders', [])}
        response = self.session.request(operation['method'], operation['url'], headers=headers, data=chunk)
        _raise_for_status(response, f"upload of {video_path.name} at offset {operation['offset']}")


class Application:
    def __init__(self, client: AppStoreConnect, app_id: str):
        self.client = client
        self.app_id = app_id

    def edit_version(self, platform: str = 'ios') -> "EditVersion":
        try:
            asc_platform = PLATFORMS[platform.lower()]
        except KeyError:
            raise ConfigurationError(f"Unsupported platform {platform!r}") from None

        versions = self.client.get(f'/v1/apps/{self.app_id}/appStoreVersions', params={
            'filter[platform]': asc_platform,
            'filter[appStoreState]': ','.join(EDITABLE_STATES),
            'limit': 1,
        })['data']
        if not versions:
            raise EditVersionNotFoundError(f"No editable {asc_platform} version for app {self.app_id}")
        return EditVersion(self.client, versions[0]['id'])


class EditVersion:
    """
    Uploads are reserved and transferred immediately but only committed on
    ``save()``. Dropping a version without saving leaves its reservations
    uncommitted, which App Store Connect discards.
    """

    def __init__(self, client: AppStoreConnect, version_id: str):
        self.client = client
        self.version_id = version_id
        self.staged: List[StagedPreview] = []
        self._localizations: Optional[Dict[str, str]] = None
        self._preview_sets: Dict[tuple, str] = {}

    def upload_trailer(self, video_path, order, locale, device_type, timestamp, poster_path):
        video_path = Path(video_path)
        if not Path(poster_path).is_file():
            raise StoreError(f"Missing poster for {video_path.name}: {poster_path}")
        mime_type = MIME_TYPES.get(video_path.suffix.lower())
        if not mime_type:
            raise StoreError(f"Unsupported video container: {video_path.name}")

        preview_set_id = self._preview_set_id(self._localization_id(locale), preview_type_for(device_type))
        reservation = self.client.post('/v1/appPreviews', json={'data': {
            'type': 'appPreviews',
            'attributes': {
                'fileName': video_path.name,
                'fileSize': video_path.stat().st_size,
                'mimeType': mime_type,
                'previewFrameTimeCode': frame_time_code(timestamp),
            },
            'relationships': {
                'appPreviewSet': {'data': {'type': 'appPreviewSets', 'id': preview_set_id}},
            },
        }})['data']

        for operation in reservation['attributes'].get('uploadOperations') or []:
            self.client.send_upload_operation(operation, video_path)

        self.staged.append(StagedPreview(reservation['id'], preview_set_id, order, file_checksum(video_path)))

    def save(self):
        for preview in self.staged:
            self.client.patch(f'/v1/appPreviews/{preview.preview_id}', json={'data': {
                'type': 'appPreviews',
                'id': preview.preview_id,
                'attributes': {'uploaded': True, 'sourceFileChecksum': preview.checksum},
            }})

        for preview_set_id in dict.fromkeys(p.preview_set_id for p in self.staged):
            relationship = f'/v1/appPreviewSets/{preview_set_id}/relationships/appPreviews'
            current_ids = [d['id'] for d in self.client.get(relationship)['data']]
            staged = {p.preview_id: p.order for p in self.staged if p.preview_set_id == preview_set_id}
            self.client.patch(relationship, json={'data': [
                {'type': 'appPreviews', 'id': preview_id}
                for preview_id in ranked_preview_ids(current_ids, staged)
            ]})

        self.staged = []

    def _localization_id(self, locale: str) -> str:
        if self._localizations is None:
            data = self.client.get(
                f'/v1/appStoreVersions/{self.version_id}/appStoreVersionLocalizations',
                params={'limit': 200},
            )['data']
            self._localizations = {d['attributes']['locale']: d['id'] for d in data}
        try:
            return self._localizations[locale]
        except KeyError:
            raise StoreError(f"Version {self.version_id} has no {locale} localization") from None

    def _preview_set_id(self, localization_id: str, preview_type: str) -> str:
        key = (localization_id, preview_type)
        if key not in self._preview_sets:
            sets = self.client.get(
                f'/v1/appStoreVersionLocalizations/{localization_id}/appPreviewSets',
                params={'filter[previewType]': preview_type},
            )['data']
            if sets:
                self._preview_sets[key] = sets[0]['id']
            else:
                created = self.client.post('/v1/appPreviewSets', json={'data': {
                    'type': 'appPreviewSets',
                    'attributes': {'previewType': preview_type},
                    'relationships': {
                        'appStoreVersionLocalization': {
                            'data': {'type': 'appStoreVersionLocalizations', 'id': localization_id},
                        },
                    },
                }})['data']
                self._preview_sets[key] = created['id']
        return self._preview_sets[key]


def _raise_for_status(response, action: str):
    if 200 <= response.status_code < 300:
        return
    raise StoreError(f"{action} failed ({response.status_code}): {response.text[:400]}",
                     status=response.status_code)
