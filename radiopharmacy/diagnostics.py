"""
Side channel for problems found during tick recomputation or state loading.

A malformed stored entity is skipped and noted here instead of aborting
the pass, so one corrupt vial never hides the rest of the inventory.
"""

import logging
from collections import deque
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Diagnostic:
    component: str
    entity_id: str
    message: str


class Diagnostics:
    """Bounded log of skipped entities"""

    def __init__(self, maxlen=500):
        self._entries = deque(maxlen=maxlen)

    def report(self, component, entity_id, error):
        entry = Diagnostic(component, str(entity_id), str(error))
        self._entries.append(entry)
        logger.warning(f"[{component}] skipped {entity_id}: {error}")
        return entry

    def entries(self):
        return list(self._entries)

    def clear(self):
        self._entries.clear()

    def __len__(self):
        return len(self._entries)
