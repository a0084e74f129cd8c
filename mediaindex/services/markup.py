"""
Page markup fetcher.

Retrieves the raw markdown of a page from the preview host:

    https://{ref}--{repo}--{org}.{preview_host}{path}

When the caller runs on a different origin the request goes through the
CORS relay; otherwise it is sent directly and falls back to the relay if the
direct request fails.
"""

import logging
from typing import Optional
from urllib.parse import quote, urlparse

import requests

from mediaindex.indexer.context import BuildContext

logger = logging.getLogger(__name__)


class MarkupFetcher:
    """Fetches page markdown for usage extraction. Failures return None."""

    def __init__(self, context: BuildContext, session: Optional[requests.Session] = None):
        self.context = context
        self.config = context.config
        # preview content is public; no bearer token on these requests
        self.session = session or requests.Session()

    def page_url(self, page_path: str) -> str:
        ctx = self.context
        path = page_path if page_path.startswith('/') else f'/{page_path}'
        return f"https://{ctx.ref}--{ctx.repo}--{ctx.org}.{self.config.PREVIEW_HOST}{path}"

    def proxy_url(self, url: str) -> str:
        return f"{self.config.CORS_PROXY_URL}?url={quote(url, safe='')}"

    def is_cross_origin(self, url: str) -> bool:
        caller = (self.config.CALLER_ORIGIN or '').rstrip('/')
        if not caller:
            return False
        target = urlparse(url)
        return f"{target.scheme}://{target.netloc}" != caller

    def _get(self, url: str) -> requests.Response:
        return self.session.get(url, timeout=self.config.REQUEST_TIMEOUT)

    def fetch_with_cors_proxy(self, url: str) -> requests.Response:
        if self.is_cross_origin(url):
            return self._get(self.proxy_url(url))
        try:
            resp = self._get(url)
        except requests.ConnectionError as e:
            logger.debug(f"Direct fetch failed for {url} ({e}), retrying via relay")
            return self._get(self.proxy_url(url))
        if not resp.ok:
            return self._get(self.proxy_url(url))
        return resp

    def fetch_page_markdown(self, page_path: str) -> Optional[str]:
        """Raw markdown for ``page_path`` (e.g. ``/drafts/page.md``), or None."""
        url = self.page_url(page_path)
        try:
            resp = self.fetch_with_cors_proxy(url)
        except requests.RequestException as e:
            logger.error(f"Failed to fetch page markdown {page_path}: {e}")
            return None
        if not resp.ok:
            logger.debug(f"Page markdown unavailable for {page_path}: {resp.status_code}")
            return None
        return resp.text
