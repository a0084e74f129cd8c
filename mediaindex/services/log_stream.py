"""
Log Stream Fetcher.

Paginated retrieval of the platform's audit log (``log``) and media log
(``medialog``). Pages are fetched strictly in order with a small delay
between requests, and handed to the caller one chunk at a time so a full
history never has to sit in memory.
"""

import math
import time
import logging
from typing import Callable, Dict, Generator, List, Optional
from urllib.parse import urlencode, urljoin

import requests

from mediaindex.indexer.context import BuildContext, now_ms

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000
HOUR_MS = 60 * 60 * 1000
MAX_SINCE_DAYS = 90
FULL_HISTORY = '36500d'

OnChunk = Callable[[List[dict]], None]


class LogAPIError(requests.HTTPError):
    """Non-success response from the log API. Aborts the build."""


def timestamp_to_duration(since: Optional[int], now: Optional[int] = None) -> str:
    """
    Convert an epoch-ms timestamp into the API's ``since`` duration.

    Ages under a day are expressed in hours (minimum ``1h``), longer ages in
    days capped at 90. A missing timestamp gives the capped default.
    """
    if not since:
        return f'{MAX_SINCE_DAYS}d'
    age_ms = (now if now is not None else now_ms()) - since
    if age_ms < DAY_MS:
        hours = math.ceil(age_ms / HOUR_MS)
        return f'{hours}h' if hours > 0 else '1h'
    return f'{min(math.ceil(age_ms / DAY_MS), MAX_SINCE_DAYS)}d'


class LogStreamClient:
    """Client for the ``log`` and ``medialog`` endpoints."""

    def __init__(self, context: BuildContext, session: Optional[requests.Session] = None):
        self.context = context
        self.config = context.config
        self.session = session or requests.Session()
        if context.token:
            self.session.headers['Authorization'] = f'Bearer {context.token}'

    def build_log_url(self, endpoint: str, org: str, repo: str, ref: str) -> str:
        base = f"{self.config.LOG_API_HOST.rstrip('/')}/{endpoint}/{org}/{repo}/{ref}"
        return f"{base}/" if endpoint == 'medialog' else base

    def iter_log_pages(
        self,
        endpoint: str,
        org: str,
        repo: str,
        ref: str,
        since: Optional[int],
        limit: int
    ) -> Generator[List[dict], None, None]:
        """
        Yield each page of log entries in order.

        Follows ``links.next`` when present, else ``nextToken``; stops when a
        response has neither.

        Raises:
            LogAPIError: on any non-2xx response
        """
        params: Dict[str, str] = {
            'limit': str(limit),
            'since': timestamp_to_duration(since) if since is not None else FULL_HISTORY,
        }
        base_url = self.build_log_url(endpoint, org, repo, ref)
        next_url: Optional[str] = f"{base_url}?{urlencode(params)}"
        delay = self.config.RATE_LIMIT_DELAY_MS / 1000

        while next_url:
            resp = self.session.get(next_url, timeout=self.config.REQUEST_TIMEOUT)
            if not resp.ok:
                raise LogAPIError(
                    f"{endpoint} API error: {resp.status_code} {resp.reason}", response=resp
                )

            data = resp.json() or {}
            entries = data.get('entries') or data.get('data') or []
            next_link = (data.get('links') or {}).get('next')
            token = data.get('nextToken')
            logger.debug(
                f"[{endpoint}] page: {len(entries)} entries | "
                f"nextToken={token} | links.next={next_link}"
            )

            yield entries

            if isinstance(next_link, str) and next_link.strip():
                next_url = urljoin(base_url, next_link.strip())
            elif token:
                params['nextToken'] = token
                next_url = f"{base_url}?{urlencode(params)}"
            else:
                next_url = None

            if next_url and delay > 0:
                time.sleep(delay)

    def stream_log(
        self,
        endpoint: str,
        org: str,
        repo: str,
        ref: str,
        since: Optional[int],
        limit: int,
        on_chunk: OnChunk
    ) -> int:
        """
        Stream a log to ``on_chunk`` page by page.

        Returns:
            Total number of entries delivered
        """
        total = 0
        for entries in self.iter_log_pages(endpoint, org, repo, ref, since, limit):
            if entries:
                on_chunk(entries)
                total += len(entries)
        return total

    def fetch_log(
        self,
        endpoint: str,
        since: Optional[int],
        on_chunk: Optional[OnChunk] = None
    ) -> List[dict]:
        """Collect a (small) log slice for the context's site."""
        collected: List[dict] = []

        def collect(entries: List[dict]):
            collected.extend(entries)
            if on_chunk:
                on_chunk(entries)

        ctx = self.context
        self.stream_log(
            endpoint, ctx.org, ctx.repo, ctx.ref, since, self.config.API_PAGE_SIZE, collect
        )
        return collected
