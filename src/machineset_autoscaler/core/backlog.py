#!/usr/bin/env python3
"""
Pending-job backlog per instance group, read from the automation platform API
"""

import json
import logging
import math
from typing import List, Sequence
from urllib.parse import quote

from prometheus_client import Gauge

from machineset_autoscaler.models.metrics import JobBacklogEntry
from .exceptions import BacklogDecodeError, ConfigurationError
from .fetcher import RetryingFetcher

logger = logging.getLogger(__name__)

PENDING_JOBS = Gauge('autoscaler_pending_jobs', 'Pending jobs per instance group', ['instance_group'])

PENDING_JOBS_PATH = "/api/v2/jobs/?instance_group__name__icontains={group}&or__status=pending"


class JobBacklogSource:
    """Reads the pending-job count of every configured instance group"""

    def __init__(self, base_url: str, instance_groups: Sequence[str], fetcher: RetryingFetcher):
        if not instance_groups:
            raise ConfigurationError("No instance groups configured")
        self.base_url = base_url.rstrip("/")
        self.instance_groups = list(instance_groups)
        self.fetcher = fetcher

    def query_url(self, instance_group: str) -> str:
        return self.base_url + PENDING_JOBS_PATH.format(group=quote(instance_group, safe=""))

    def fetch(self) -> List[JobBacklogEntry]:
        """One entry per configured group, in configuration order"""
        entries = []
        for group in self.instance_groups:
            body = self.fetcher.get(self.query_url(group))
            count = self._decode_count(group, body)
            entries.append(JobBacklogEntry(instance_group=group, pending_count=count))
            PENDING_JOBS.labels(instance_group=group).set(count)

        logger.debug(f"Backlog: {[(e.instance_group, e.pending_count) for e in entries]}")
        return entries

    @staticmethod
    def _decode_count(group: str, body: bytes) -> int:
        try:
            payload = json.loads(body)
        except (ValueError, UnicodeDecodeError) as e:
            raise BacklogDecodeError(group, f"invalid JSON payload: {e}") from e

        if not isinstance(payload, dict):
            raise BacklogDecodeError(group, f"expected a JSON object, got {type(payload).__name__}")
        if "count" not in payload:
            raise BacklogDecodeError(group, "payload has no 'count' field")

        count = payload["count"]
        # bool is an int subclass; reject it explicitly
        if isinstance(count, bool) or not isinstance(count, (int, float)):
            raise BacklogDecodeError(group, f"'count' is not numeric: {count!r}")
        if not math.isfinite(count) or count < 0 or count != int(count):
            raise BacklogDecodeError(group, f"'count' is not a non-negative whole number: {count!r}")
        return int(count)
