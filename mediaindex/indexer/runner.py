"""
Single-flight build runner.

Holds the build state shared by the API and CLI (whether a build is running,
its latest progress, errors and log lines) and makes sure only one build
runs per process at a time.
"""

import threading
import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from mediaindex.indexer.builder import IndexBuilder
from mediaindex.indexer.context import BuildContext

logger = logging.getLogger(__name__)

BuilderFactory = Callable[[BuildContext], IndexBuilder]


class BuildRunner:
    """Runs at most one IndexBuilder at a time."""

    def __init__(self, builder_factory: BuilderFactory = IndexBuilder):
        self.builder_factory = builder_factory
        self._lock = threading.Lock()
        self.building = False
        self.progress: Dict[str, Any] = {'stage': 'idle', 'message': '', 'percent': 0}
        self.build_start_time: Optional[float] = None
        self.errors = []
        self.logs = []
        self.last_result: Optional[Dict[str, Any]] = None
        self.site: Optional[str] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def start(self, context: BuildContext, mode: str = 'auto', background: bool = True) -> bool:
        """
        Start a build for ``context``.

        Returns:
            False if a build is already running, True otherwise. With
            ``background=False`` the build has finished when this returns and
            its outcome is in ``last_result``.
        """
        if not self._lock.acquire(blocking=False):
            logger.info(f"Build requested for {context.site_path} while another is running")
            return False

        self.building = True
        self.build_start_time = time.time()
        self.site = context.site_path
        self.errors = context.errors
        self.logs = context.logs
        self.progress = dict(context.progress)
        self.last_result = None

        # keep the caller's callback, mirror progress into the shared state
        caller_progress = context.on_progress

        def on_progress(progress: Dict[str, Any]):
            self.progress = progress
            if caller_progress:
                caller_progress(progress)

        context.on_progress = on_progress

        if background:
            self._thread = threading.Thread(
                target=self._execute, args=(context, mode), daemon=True
            )
            self._thread.start()
        else:
            self._execute(context, mode)
        return True

    def wait(self, timeout: Optional[float] = None):
        """Block until a background build finishes."""
        if self._thread is not None:
            self._thread.join(timeout)

    def _execute(self, context: BuildContext, mode: str):
        started = time.time()
        try:
            entries = self.builder_factory(context).run(mode)
            self.last_result = {
                'success': True,
                'entries': len(entries),
                'duration': round(time.time() - started, 2),
                'finished_at': datetime.now().isoformat(),
            }
            logger.info(f"Build finished for {context.site_path}: {len(entries)} entries")
        except Exception as e:
            logger.exception(f"Build failed for {context.site_path}: {e}")
            context.add_error(str(e))
            self.progress = {'stage': 'error', 'message': str(e), 'percent': 0}
            self.last_result = {
                'success': False,
                'error': str(e),
                'duration': round(time.time() - started, 2),
                'finished_at': datetime.now().isoformat(),
            }
        finally:
            self.building = False
            self._lock.release()

    def snapshot(self) -> Dict[str, Any]:
        """JSON-safe copy of the runner state."""
        elapsed = None
        if self.build_start_time is not None and self.building:
            elapsed = round(time.time() - self.build_start_time, 1)
        return {
            'building': self.building,
            'site': self.site,
            'progress': dict(self.progress),
            'elapsed_seconds': elapsed,
            'errors': list(self.errors),
            'logs': list(self.logs[-50:]),
            'last_result': dict(self.last_result) if self.last_result else None,
        }


_runner: Optional[BuildRunner] = None


def get_runner() -> BuildRunner:
    """Process-wide runner."""
    global _runner
    if _runner is None:
        _runner = BuildRunner()
    return _runner
