"""
Advisory memory-pressure check.

Full builds hold the page buckets and the (hash, page) map in memory. When
the process gets close to its memory ceiling the build reports a warning; it
never throttles, spills or aborts.
"""

import logging
from typing import Dict, Optional

import psutil

logger = logging.getLogger(__name__)

MEMORY_WARNING_RATIO = 0.8


def _address_space_limit() -> Optional[int]:
    """Soft RLIMIT_AS if one is set (POSIX only)."""
    try:
        import resource
    except ImportError:
        return None
    soft, _ = resource.getrlimit(resource.RLIMIT_AS)
    if soft == resource.RLIM_INFINITY or soft <= 0:
        return None
    return soft


def check_memory(ratio: float = MEMORY_WARNING_RATIO) -> Dict:
    """
    Compare the process resident set size with its ceiling.

    The ceiling is the address-space limit when one is set, otherwise the
    machine's physical memory.

    Returns:
        {'warning': bool, 'used_mb': float, 'limit_mb': float} when measurable,
        otherwise {'warning': False}
    """
    try:
        used = psutil.Process().memory_info().rss
        limit = _address_space_limit() or psutil.virtual_memory().total
    except psutil.Error as e:
        logger.debug(f"Memory check unavailable: {e}")
        return {'warning': False}

    if not used or not limit:
        return {'warning': False}

    used_mb = used / (1024 * 1024)
    limit_mb = limit / (1024 * 1024)
    return {
        'warning': used_mb > limit_mb * ratio,
        'used_mb': used_mb,
        'limit_mb': limit_mb,
    }
