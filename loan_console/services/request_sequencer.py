from __future__ import annotations

import itertools
import logging

logger = logging.getLogger(__name__)


class ResponseGate:
    """Lets only the newest in-flight request apply its response.

    Each fetch takes a ticket before awaiting; when the response arrives,
    ``accept`` is true only if no newer ticket was issued meanwhile.
    """

    def __init__(self, name: str = "listing") -> None:
        self.name = name
        self._counter = itertools.count(1)
        self._latest = 0
        self.discarded = 0

    @property
    def latest(self) -> int:
        return self._latest

    def issue(self) -> int:
        self._latest = next(self._counter)
        return self._latest

    def accept(self, ticket: int) -> bool:
        if ticket == self._latest:
            return True
        self.discarded += 1
        logger.info(
            "Discarded stale %s response #%d (latest #%d)", self.name, ticket, self._latest
        )
        return False
