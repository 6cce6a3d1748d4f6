"""Remote mirror gateways.

A gateway exposes two blocking operations, ``fetch_snapshot`` and
``push_snapshot``, over a wire payload of the form
``{"warehouses": [...], "items": [...], "logs": [...]}`` (see core.codec).
Four variants are provided and one is picked at startup by ``build_gateway``
from the SYNC_BACKEND environment variable:

- ``mock``: in-memory, seeded with the demo data
- ``file``: a JSON file on local disk (manual backup/restore)
- ``script``: a Google Apps Script web endpoint reached over HTTP
- ``sheets``: a spreadsheet reached through the Google Sheets API

Every transport failure is raised as TransportError so the sync controller
only has one thing to catch.

Copyright (c) Bryn Gwalad 2025
"""

import copy
import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

import requests
from dotenv import load_dotenv

from .codec import ITEM_COLUMNS, LOG_COLUMNS, WAREHOUSE_COLUMNS, encode_snapshot, records_to_rows, rows_to_records
from .errors import TransportError
from .mock_data import initial_snapshot

load_dotenv()

logger = logging.getLogger("inventory.gateway")

COLLECTIONS = ("warehouses", "items", "logs")

# Sheet (tab) names in the mirrored spreadsheet, with their column order.
SHEETS = {
    "warehouses": ("Warehouses", WAREHOUSE_COLUMNS),
    "items": ("Items", ITEM_COLUMNS),
    "logs": ("Logs", LOG_COLUMNS),
}


def empty_payload() -> Dict[str, list]:
    return {name: [] for name in COLLECTIONS}


class MirrorGateway(ABC):
    """Capability to pull and push a full snapshot payload."""

    name = "base"

    @abstractmethod
    def fetch_snapshot(self) -> Dict[str, Any]:
        """Return the remote payload. Raise TransportError on failure."""

    @abstractmethod
    def push_snapshot(self, payload: Dict[str, Any]) -> None:
        """Overwrite the remote copy with ``payload``. Raise TransportError on failure."""


class MockGateway(MirrorGateway):
    """In-memory mirror, useful for demos and tests."""

    name = "mock"

    def __init__(self, payload: Optional[Dict[str, Any]] = None, seed: bool = True):
        if payload is None:
            payload = encode_snapshot(initial_snapshot()) if seed else empty_payload()
        self.remote = copy.deepcopy(payload)
        self.push_count = 0

    def fetch_snapshot(self) -> Dict[str, Any]:
        return copy.deepcopy(self.remote)

    def push_snapshot(self, payload: Dict[str, Any]) -> None:
        self.remote = copy.deepcopy(payload)
        self.push_count += 1


class LocalFileGateway(MirrorGateway):
    """Mirror stored as a single JSON document on disk."""

    name = "file"

    def __init__(self, path: str):
        self.path = Path(path)

    def fetch_snapshot(self) -> Dict[str, Any]:
        if not self.path.exists():
            return empty_payload()
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as exc:
            raise TransportError(f"Could not read snapshot file {self.path}: {exc}") from exc

    def push_snapshot(self, payload: Dict[str, Any]) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
            os.replace(tmp, self.path)
        except OSError as exc:
            raise TransportError(f"Could not write snapshot file {self.path}: {exc}") from exc


class ScriptEndpointGateway(MirrorGateway):
    """Google Apps Script web app: GET returns the snapshot, POST overwrites it.

    The script replies with a bare "OK" (or nothing useful at all behind a
    redirect), so by default a push counts as successful once the request
    completes without a transport error. Set ``verify_push`` to also treat
    non-2xx statuses as failures.
    """

    name = "script"

    def __init__(self, url: str, timeout: float = 30, verify_push: bool = False, session: Optional[requests.Session] = None):
        if not url:
            raise ValueError("GOOGLE_SCRIPT_URL is required for the script backend")
        self.url = url
        self.timeout = timeout
        self.verify_push = verify_push
        self.session = session or requests.Session()

    def fetch_snapshot(self) -> Dict[str, Any]:
        try:
            response = self.session.get(self.url, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as exc:
            raise TransportError(f"Snapshot fetch failed: {exc}") from exc
        except ValueError as exc:
            raise TransportError(f"Snapshot endpoint returned invalid JSON: {exc}") from exc

    def push_snapshot(self, payload: Dict[str, Any]) -> None:
        try:
            response = self.session.post(
                self.url,
                data=json.dumps(payload),
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
            if self.verify_push:
                response.raise_for_status()
        except requests.exceptions.RequestException as exc:
            raise TransportError(f"Snapshot push failed: {exc}") from exc
        logger.debug("Snapshot posted to script endpoint; status=%s", response.status_code)


class SheetsApiGateway(MirrorGateway):
    """Spreadsheet reached through the Google Sheets API (v4).

    Each collection lives in its own tab with a header row. Credentials are
    resolved like the Drive uploader used to: a user OAuth token if present,
    otherwise a service account (optionally impersonating a user).
    """

    name = "sheets"
    SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]

    def __init__(
        self,
        spreadsheet_id: str,
        credentials_path: str = "credentials.json",
        token_path: str = "environment/token.json",
        impersonate: Optional[str] = None,
        service: Any = None,
    ):
        if not spreadsheet_id:
            raise ValueError("SHEETS_SPREADSHEET_ID is required for the sheets backend")
        self.spreadsheet_id = spreadsheet_id
        self.credentials_path = credentials_path
        self.token_path = token_path
        self.impersonate = impersonate
        self._service = service

    def _build_service(self):
        from googleapiclient.discovery import build

        if os.path.exists(self.token_path):
            try:
                from google.oauth2.credentials import Credentials as UserCredentials

                logger.info("Using OAuth token from %s to build Sheets client", self.token_path)
                creds = UserCredentials.from_authorized_user_file(self.token_path, scopes=self.SCOPES)
                return build("sheets", "v4", credentials=creds, cache_discovery=False)
            except Exception:
                logger.exception("Failed to load user OAuth token from %s; falling back to service account", self.token_path)

        from google.oauth2.service_account import Credentials as ServiceAccountCredentials

        if not os.path.exists(self.credentials_path):
            raise TransportError(f"Sheets credentials file not found at {self.credentials_path}")
        creds = ServiceAccountCredentials.from_service_account_file(self.credentials_path, scopes=self.SCOPES)
        if self.impersonate:
            creds = creds.with_subject(self.impersonate)
            logger.info("Impersonating user %s for Sheets access", self.impersonate)
        return build("sheets", "v4", credentials=creds, cache_discovery=False)

    @property
    def service(self):
        if self._service is None:
            try:
                self._service = self._build_service()
            except TransportError:
                raise
            except Exception as exc:
                raise TransportError(f"Could not build Sheets client: {exc}") from exc
        return self._service

    def fetch_snapshot(self) -> Dict[str, Any]:
        ranges = [SHEETS[name][0] for name in COLLECTIONS]
        try:
            result = (
                self.service.spreadsheets()
                .values()
                .batchGet(spreadsheetId=self.spreadsheet_id, ranges=ranges, valueRenderOption="UNFORMATTED_VALUE")
                .execute()
            )
        except TransportError:
            raise
        except Exception as exc:
            raise TransportError(f"Sheets fetch failed: {exc}") from exc

        payload = empty_payload()
        for name, value_range in zip(COLLECTIONS, result.get("valueRanges", [])):
            payload[name] = rows_to_records(value_range.get("values", []))
        return payload

    def push_snapshot(self, payload: Dict[str, Any]) -> None:
        values = self.service.spreadsheets().values()
        try:
            for name in COLLECTIONS:
                sheet, columns = SHEETS[name]
                values.clear(spreadsheetId=self.spreadsheet_id, range=sheet, body={}).execute()
                records = payload.get(name) or []
                if not records:
                    continue
                values.update(
                    spreadsheetId=self.spreadsheet_id,
                    range=f"{sheet}!A1",
                    valueInputOption="RAW",
                    body={"values": records_to_rows(records, columns)},
                ).execute()
        except Exception as exc:
            raise TransportError(f"Sheets push failed: {exc}") from exc


def build_gateway(backend: Optional[str] = None) -> MirrorGateway:
    """Create the gateway selected by ``backend`` or the SYNC_BACKEND env var."""
    backend = (backend or os.getenv("SYNC_BACKEND", "mock")).strip().lower()
    timeout = float(os.getenv("SYNC_TIMEOUT", "30"))
    if backend == "mock":
        return MockGateway()
    if backend == "file":
        return LocalFileGateway(os.getenv("SNAPSHOT_FILE", "database/snapshot.json"))
    if backend == "script":
        return ScriptEndpointGateway(
            os.getenv("GOOGLE_SCRIPT_URL", ""),
            timeout=timeout,
            verify_push=os.getenv("SCRIPT_VERIFY_PUSH", "0") in ("1", "true", "True"),
        )
    if backend == "sheets":
        return SheetsApiGateway(
            os.getenv("SHEETS_SPREADSHEET_ID", ""),
            credentials_path=os.getenv("GSHEETS_CREDENTIALS_PATH", "credentials.json"),
            token_path=os.getenv("GSHEETS_TOKEN_PATH", "environment/token.json"),
            impersonate=os.getenv("GSHEETS_IMPERSONATE_USER"),
        )
    raise ValueError(f"Unknown SYNC_BACKEND {backend!r}; expected mock, file, script or sheets")
