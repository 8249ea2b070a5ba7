"""In-process cache of active workflow instances."""

from __future__ import annotations

import logging
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Callable, Iterator, List, Optional

from .contracts import utc_now
from .persistence.models import TERMINAL_STATUSES, WorkflowInstance

logger = logging.getLogger(__name__)


class WorkflowCache:
    """LRU cache in front of the workflow store.

    The store stays authoritative: every mutation is written through by the
    engine, so an evicted entry is simply reloaded on its next access.
    Finished workflows are dropped once they have been idle longer than
    ``retention``.
    """

    def __init__(
        self,
        max_entries: int = 256,
        retention: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = utc_now,
        on_evict: Optional[Callable[[WorkflowInstance], None]] = None,
    ) -> None:
        self.max_entries = max_entries
        self.retention = retention
        self._clock = clock
        self._on_evict = on_evict
        self._entries: "OrderedDict[str, WorkflowInstance]" = OrderedDict()

    def __contains__(self, workflow_id: str) -> bool:
        return workflow_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[WorkflowInstance]:
        return iter(list(self._entries.values()))

    def get(self, workflow_id: str) -> Optional[WorkflowInstance]:
        workflow = self._entries.get(workflow_id)
        if workflow is not None:
            self._entries.move_to_end(workflow_id)
        return workflow

    def put(self, workflow: WorkflowInstance) -> None:
        self._entries[workflow.id] = workflow
        self._entries.move_to_end(workflow.id)
        while len(self._entries) > self.max_entries:
            evicted_id, evicted = self._entries.popitem(last=False)
            logger.debug(f"Evicted workflow {evicted_id} from cache (capacity)")
            self._evicted(evicted)

    def pop(self, workflow_id: str) -> Optional[WorkflowInstance]:
        workflow = self._entries.pop(workflow_id, None)
        if workflow is not None:
            self._evicted(workflow)
        return workflow

    def _evicted(self, workflow: WorkflowInstance) -> None:
        if self._on_evict is not None:
            self._on_evict(workflow)

    def evict_expired(self) -> List[str]:
        """Drop finished workflows idle for longer than the retention window."""
        cutoff = self._clock() - self.retention
        expired = [
            wf_id
            for wf_id, wf in self._entries.items()
            if wf.status in TERMINAL_STATUSES and wf.updated_at < cutoff
        ]
        for wf_id in expired:
            self._evicted(self._entries.pop(wf_id))
        if expired:
            logger.debug(f"Evicted {len(expired)} finished workflows from cache")
        return expired
