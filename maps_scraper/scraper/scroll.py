"""Scroll the result feed until the number of rendered listings stops growing.

The decision logic lives in :func:`advance`, a pure transition over observed
listing counts::

    LOADING -> STALLING(n) -> CONVERGED | EXHAUSTED

:class:`ScrollController` only performs the browser side effects that the
transitions ask for.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Optional, Tuple

from maps_scraper.core.config import Settings
from maps_scraper.models import SearchStats

LISTING_LINK_SELECTOR = 'a[href*="/maps/place/"]'

SCROLL_TRIGGERS_JS = """
({ index, endKeyEvery }) => {
    const feed = document.querySelector('div[role="feed"]');
    if (feed) {
        feed.scrollTop = feed.scrollHeight;
    }
    const links = document.querySelectorAll('a[href*="/maps/place/"]');
    if (links.length > 0) {
        links[links.length - 1].scrollIntoView({ behavior: 'smooth' });
    }
    if (endKeyEvery > 0 && index % endKeyEvery === 0) {
        document.dispatchEvent(new KeyboardEvent('keydown', { key: 'End' }));
    }
    window.scrollBy(0, 1000);
}
"""

COUNT_LISTINGS_JS = """
() => document.querySelectorAll('a[href*="/maps/place/"]').length
"""

CLICK_MORE_JS = """
() => {
    const buttons = Array.from(document.querySelectorAll('button'));
    const more = buttons.find(btn => {
        const text = btn.textContent || '';
        return text.includes('More') || text.includes('more') || text.includes('更多') || text.includes('もっと見る');
    });
    if (more) {
        more.click();
        return true;
    }
    return false;
}
"""

SCROLL_ANCESTOR_JS = """
() => {
    const container = document.querySelector('div[role="main"]') || document.body;
    container.scrollTop = container.scrollHeight;
}
"""


class ScrollPhase(enum.Enum):
    LOADING = "loading"
    STALLING = "stalling"
    CONVERGED = "converged"
    EXHAUSTED = "exhausted"


class ScrollAction(enum.Enum):
    NONE = "none"
    CLICK_MORE = "click_more"
    SCROLL_ANCESTOR = "scroll_ancestor"


@dataclass(frozen=True)
class ScrollTuning:
    max_scrolls: int = 50
    base_delay: float = 0.5
    delay_increment: float = 0.02
    end_key_every: int = 3
    more_threshold: int = 2
    ancestor_threshold: int = 3
    stop_threshold: int = 8
    ceiling: int = 200
    more_wait: float = 2.0
    ancestor_wait: float = 1.0

    @classmethod
    def from_settings(cls, settings: Settings, max_scrolls: int) -> "ScrollTuning":
        return cls(
            max_scrolls=max_scrolls,
            base_delay=settings.scroll_base_delay,
            delay_increment=settings.scroll_delay_increment,
            end_key_every=settings.scroll_end_key_every,
            more_threshold=settings.stall_more_threshold,
            ancestor_threshold=settings.stall_ancestor_threshold,
            stop_threshold=settings.stall_stop_threshold,
            ceiling=settings.listing_ceiling,
            more_wait=settings.more_button_wait,
            ancestor_wait=settings.ancestor_scroll_wait,
        )

    def wait_for(self, iteration: int) -> float:
        return self.base_delay + iteration * self.delay_increment


@dataclass(frozen=True)
class ScrollState:
    phase: ScrollPhase = ScrollPhase.LOADING
    iteration: int = 0
    count: int = 0
    stall_count: int = 0

    @property
    def finished(self) -> bool:
        return self.phase in (ScrollPhase.CONVERGED, ScrollPhase.EXHAUSTED)


def advance(state: ScrollState, count: int, tuning: ScrollTuning) -> Tuple[ScrollState, ScrollAction]:
    """Fold one observed listing count into the convergence state."""
    if state.finished:
        return state, ScrollAction.NONE

    iteration = state.iteration + 1
    action = ScrollAction.NONE

    if count > state.count:
        phase, stall_count = ScrollPhase.LOADING, 0
    elif count == state.count:
        phase, stall_count = ScrollPhase.STALLING, state.stall_count + 1
        if stall_count == tuning.more_threshold:
            action = ScrollAction.CLICK_MORE
        elif stall_count == tuning.ancestor_threshold:
            action = ScrollAction.SCROLL_ANCESTOR
        if stall_count >= tuning.stop_threshold:
            phase, action = ScrollPhase.CONVERGED, ScrollAction.NONE
    else:
        # A virtualised feed can report fewer links; this is not progress.
        phase, stall_count = state.phase, state.stall_count

    if count >= tuning.ceiling:
        phase, action = ScrollPhase.CONVERGED, ScrollAction.NONE
    elif phase is not ScrollPhase.CONVERGED and iteration >= tuning.max_scrolls:
        phase, action = ScrollPhase.EXHAUSTED, ScrollAction.NONE

    return replace(state, phase=phase, iteration=iteration, count=count, stall_count=stall_count), action


class ScrollController:
    """Drive the feed's scroll triggers until :func:`advance` reports a final phase."""

    def __init__(
        self,
        tuning: ScrollTuning,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.tuning = tuning
        self._sleep = sleep
        self._logger = logger or logging.getLogger(__name__)

    async def run(self, page: Any, stats: SearchStats) -> ScrollState:
        self._logger.info("Starting scroll loop (max %s iterations)", self.tuning.max_scrolls)
        state = ScrollState()

        while not state.finished:
            index = state.iteration
            stats.scroll_attempts += 1
            await page.evaluate(SCROLL_TRIGGERS_JS, {"index": index, "endKeyEvery": self.tuning.end_key_every})
            await self._sleep(self.tuning.wait_for(index))

            count = int(await page.evaluate(COUNT_LISTINGS_JS) or 0)
            state, action = advance(state, count, self.tuning)

            if action is ScrollAction.CLICK_MORE:
                if await page.evaluate(CLICK_MORE_JS):
                    self._logger.info('Clicked "More" button')
                    await self._sleep(self.tuning.more_wait)
            elif action is ScrollAction.SCROLL_ANCESTOR:
                await page.evaluate(SCROLL_ANCESTOR_JS)
                await self._sleep(self.tuning.ancestor_wait)

            if index % 5 == 0:
                self._logger.info("Scroll %s: %s results loaded", index + 1, count)

        stats.loaded_count = state.count
        if state.phase is ScrollPhase.CONVERGED and state.count >= self.tuning.ceiling:
            self._logger.info("Reached %s results limit", self.tuning.ceiling)
        elif state.phase is ScrollPhase.CONVERGED:
            self._logger.info("No new results after %s attempts, stopping scroll", state.stall_count)
        self._logger.info("Scrolling complete: %s results loaded", state.count)
        return state
