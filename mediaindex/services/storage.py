"""
Storage client for the persisted index.

The index and its metadata live as JSON "sheets" in the content source:

    GET  {admin}/source{path}          -> {total, limit, offset, data: [...]}
    POST {admin}/source{path}          multipart field ``data`` = sheet JSON
    GET  {admin}/list/{org}/{repo}/... -> [{path?, name?, ext?, lastModified?}]

Reads are best-effort (a missing index simply means a full build). Writes
are fatal on failure.
"""

import json
import logging
from typing import Any, Dict, List, Optional

import requests

from mediaindex.core.models import BuildMeta
from mediaindex.indexer.context import BuildContext

logger = logging.getLogger(__name__)


class StorageError(requests.HTTPError):
    """Write to the content source failed. Aborts the build."""


def create_sheet(rows: List[Dict[str, Any]], sheet_type: str = 'sheet') -> str:
    """Serialize rows as a single-sheet JSON document."""
    return json.dumps({
        'total': len(rows),
        'limit': len(rows),
        'offset': 0,
        'data': rows,
        ':type': sheet_type,
    }, indent=2)


class SourceStore:
    """Reads and writes index sheets for the context's site."""

    def __init__(self, context: BuildContext, session: Optional[requests.Session] = None):
        self.context = context
        self.config = context.config
        self.admin = self.config.DA_ADMIN_HOST.rstrip('/')
        self.session = session or requests.Session()
        if context.token:
            self.session.headers['Authorization'] = f'Bearer {context.token}'

    def _source_url(self, path: str) -> str:
        return f"{self.admin}/source{path}"

    # ==================== Reads ====================

    def load_sheet(self, path: str) -> Optional[Dict[str, Any]]:
        try:
            resp = self.session.get(self._source_url(path), timeout=self.config.REQUEST_TIMEOUT)
            if not resp.ok:
                logger.debug(f"No sheet at {path}: {resp.status_code}")
                return None
            return resp.json()
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Failed to load {path}: {e}")
            return None

    def load_meta(self, path: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """First row of the metadata sheet, or None."""
        data = self.load_sheet(path or self.context.meta_path)
        if not data:
            return None
        rows = data.get('data') if isinstance(data, dict) else None
        if isinstance(rows, list):
            return rows[0] if rows else None
        return data

    def load_build_meta(self) -> BuildMeta:
        return BuildMeta.from_row(self.load_meta())

    def load_index(self, path: Optional[str] = None) -> List[Dict[str, Any]]:
        """Index rows, or [] when the index is missing or unreadable."""
        data = self.load_sheet(path or self.context.index_path)
        if not data:
            return []
        rows = data.get('data') if isinstance(data, dict) else data
        return rows if isinstance(rows, list) else []

    def list_dir(self, path: str) -> List[Dict[str, Any]]:
        """Children of a folder within the site."""
        normalized = path.lstrip('/')
        url = f"{self.admin}/list/{self.context.org}/{self.context.repo}/{normalized}"
        try:
            resp = self.session.get(url, timeout=self.config.REQUEST_TIMEOUT)
            if not resp.ok:
                return []
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Failed to list {path}: {e}")
            return []
        if isinstance(data, list):
            return data
        return (data or {}).get('sources') or []

    def get_index_info(self) -> Dict[str, Any]:
        """
        Whether the index file exists and when it was last modified.

        Returns:
            {'exists': bool, 'last_modified': epoch ms or None}
        """
        name, _, ext = self.config.INDEX_FILENAME.rpartition('.')
        for item in self.list_dir(self.context.index_folder):
            is_index = (
                (item.get('name') == name and item.get('ext') == ext)
                or str(item.get('path') or '').endswith(f"/{self.config.INDEX_FILENAME}")
            )
            if not is_index:
                continue
            last_modified = item.get('lastModified')
            if last_modified is None:
                last_modified = (item.get('props') or {}).get('lastModified')
            if isinstance(last_modified, bool) or not isinstance(last_modified, (int, float)):
                last_modified = None
            return {
                'exists': True,
                'last_modified': int(last_modified) if last_modified is not None else None,
            }
        return {'exists': False, 'last_modified': None}

    # ==================== Writes ====================

    def save_sheet(self, rows: List[Dict[str, Any]], path: str):
        """
        Overwrite a sheet.

        Raises:
            StorageError: on any non-2xx response
        """
        body = create_sheet(rows)
        resp = self.session.post(
            self._source_url(path),
            files={'data': ('data.json', body, 'application/json')},
            timeout=self.config.REQUEST_TIMEOUT,
        )
        if not resp.ok:
            raise StorageError(
                f"Failed to save {path}: {resp.status_code} {resp.reason}", response=resp
            )
        logger.info(f"Saved {len(rows)} rows to {path}")

    def save_index(self, rows: List[Dict[str, Any]]):
        self.save_sheet(rows, self.context.index_path)

    def save_meta(self, meta: BuildMeta):
        self.save_sheet([meta.to_row()], self.context.meta_path)
