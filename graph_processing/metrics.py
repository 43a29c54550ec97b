"""
Job Metrics
Counter handle passed explicitly through the pipeline stages
"""

import logging
from collections import Counter
from typing import Dict

logger = logging.getLogger(__name__)


class Metrics:
    """Named integer counters for one task or one local pipeline run"""

    def __init__(self):
        self._counters = Counter()

    def incr(self, name: str, amount: int = 1):
        """Increment counter `name` by `amount`"""
        self._counters[name] += amount

    def get(self, name: str) -> int:
        return self._counters.get(name, 0)

    def merge(self, other: 'Metrics'):
        """Fold the counters of another task into this one"""
        self._counters.update(other._counters)

    def as_dict(self) -> Dict[str, int]:
        return dict(self._counters)

    def log_summary(self):
        for name in sorted(self._counters):
            logger.info(f"{name} = {self._counters[name]}")

    def __repr__(self):
        return f"Metrics({dict(self._counters)})"
