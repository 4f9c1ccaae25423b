"""Cancel-and-reschedule timers for free-text search input."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from taskboard.filters import TaskFilter

logger = logging.getLogger(__name__)


class Debouncer:
    """Run a callback once input has been quiet for ``delay`` seconds.

    Each call to :meth:`schedule` cancels the pending call, if any, and
    starts the wait over.
    """

    def __init__(self, delay: float = 0.5) -> None:
        self.delay = delay
        self._handle: Optional[asyncio.TimerHandle] = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def schedule(self, callback: Callable[..., None], *args) -> None:
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay, self._fire, callback, args)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self, callback: Callable[..., None], args: tuple) -> None:
        self._handle = None
        callback(*args)


class DebouncedSearch:
    """Feeds typed search text into a task filter once typing settles.

    ``on_change`` receives the new filter. Other filter fields take effect
    immediately through :meth:`set_filters`; only the search text waits.
    """

    def __init__(
        self,
        on_change: Callable[[TaskFilter], None],
        filters: Optional[TaskFilter] = None,
        delay: float = 0.5,
    ) -> None:
        self._on_change = on_change
        self._debouncer = Debouncer(delay)
        self.filters = filters or TaskFilter()

    @property
    def pending(self) -> bool:
        return self._debouncer.pending

    def type(self, text: str) -> None:
        self._debouncer.schedule(self._apply_search, text)

    def set_filters(self, filters: TaskFilter) -> None:
        """Replace the non-search fields, keeping the settled search text."""
        self.filters = filters.model_copy(update={"search": self.filters.search})
        self._on_change(self.filters)

    def cancel(self) -> None:
        self._debouncer.cancel()

    def _apply_search(self, text: str) -> None:
        search = text.strip() or None
        if search == self.filters.search:
            return
        logger.debug("Search settled on %r", search)
        self.filters = self.filters.model_copy(update={"search": search})
        self._on_change(self.filters)
