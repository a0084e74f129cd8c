"""
Per-build context.

Everything a build needs (site coordinates, credentials, configuration and
the progress/error accumulators) travels in one BuildContext value instead
of module-level state.
"""

import time
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from mediaindex.config import Config, get_config, validate_site_name

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[Dict[str, Any]], None]


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class BuildContext:
    org: str
    repo: str
    ref: str = 'main'
    token: Optional[str] = None
    config: Config = field(default_factory=get_config)
    on_progress: Optional[ProgressCallback] = None
    on_log: Optional[Callable[[str], None]] = None
    progress: Dict[str, Any] = field(
        default_factory=lambda: {'stage': 'idle', 'message': '', 'percent': 0}
    )
    errors: List[Dict[str, str]] = field(default_factory=list)
    logs: List[Dict[str, str]] = field(default_factory=list)

    def __post_init__(self):
        if not validate_site_name(self.org) or not validate_site_name(self.repo):
            raise ValueError(
                f"Invalid org/repo: {self.org!r}/{self.repo!r}. Names must be alphanumeric "
                f"with optional hyphens, underscores, or dots."
            )

    @classmethod
    def from_config(cls, config: Optional[Config] = None, **overrides) -> 'BuildContext':
        """Context for the site configured in the environment, with overrides."""
        config = config or get_config()
        values = {
            'org': config.SITE_ORG,
            'repo': config.SITE_REPO,
            'ref': config.SITE_REF or 'main',
            'token': config.DA_TOKEN or None,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(config=config, **values)

    @property
    def site_path(self) -> str:
        return f"/{self.org}/{self.repo}"

    @property
    def index_folder(self) -> str:
        return self.config.INDEX_FOLDER

    @property
    def index_path(self) -> str:
        return f"{self.site_path}/{self.config.INDEX_FOLDER}/{self.config.INDEX_FILENAME}"

    @property
    def meta_path(self) -> str:
        return f"{self.site_path}/{self.config.INDEX_FOLDER}/{self.config.META_FILENAME}"

    def report(self, stage: str, message: str, percent: int):
        """Update build progress and notify the caller."""
        self.progress = {'stage': stage, 'message': message, 'percent': percent}
        logger.info(f"[{stage}] {message}")
        if self.on_progress:
            self.on_progress(dict(self.progress))

    def log(self, message: str, level: str = 'info'):
        self.logs.append({'message': message, 'type': level})
        if self.on_log:
            self.on_log(message)

    def add_error(self, message: str):
        self.errors.append({'message': message})
