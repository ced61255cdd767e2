"""
navigation.py - Match cursor over the highlighted files of one search.

Every highlighted match in a search has a global number (1..total) even
though matches live in separate files. ``MatchNavigator`` keeps the
"current match" position, fetches more file content on demand when the
cursor runs past what has been materialized, and tracks which file panels
are open so the active match is visible.

State is published as immutable ``NavigationState`` snapshots; renderers
subscribe instead of reading shared mutable structures.

Only one content fetch may run per search at a time. A step or fetch
request that arrives while one is in flight is dropped (not queued) and
simply returns the current snapshot.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Iterable, Optional

from .constants import FILE_ERROR_CLEAR_DELAY
from .errors import ErrorRecord
from .highlight import is_pending, marker_element_id

log = logging.getLogger(__name__)

# (file, starting_match_count) -> (processed_file, new_total)
FileFetcher = Callable[[dict[str, Any], int], tuple[dict[str, Any], int]]
Scheduler = Callable[[float, Callable[[], None]], Any]
Subscriber = Callable[["NavigationState"], None]


def _start_timer(delay: float, fn: Callable[[], None]) -> threading.Timer:
    timer = threading.Timer(delay, fn)
    timer.daemon = True
    timer.start()
    return timer


@dataclass(frozen=True)
class NavigationState:
    search_id: str
    current_index: int = 0
    total_match_count: int | None = None
    expanded_files: frozenset[int] = frozenset()
    active_marker_id: str | None = None
    fetch_in_flight: bool = False
    running_files: frozenset[int] = frozenset()
    more_files_to_open: bool = False
    error_messages: dict[int, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "searchId": self.search_id,
            "currentIndex": self.current_index,
            "totalMatchCount": self.total_match_count,
            "expandedFiles": sorted(self.expanded_files),
            "activeMarkerId": self.active_marker_id,
            "fetchInFlight": self.fetch_in_flight,
            "runningFiles": sorted(self.running_files),
            "moreFilesToOpen": self.more_files_to_open,
            "errorMessages": {str(k): v for k, v in sorted(self.error_messages.items())},
        }


class MatchNavigator:
    """Cursor, expansion state and on-demand fetching for one search."""

    def __init__(
        self,
        search_id: str,
        files: list[dict[str, Any]],
        fetcher: FileFetcher,
        *,
        total_match_count: int | None = None,
        error_clear_delay: float = FILE_ERROR_CLEAR_DELAY,
        schedule: Optional[Scheduler] = None,
    ):
        self.search_id = search_id
        self._files = [dict(f, index=i) for i, f in enumerate(files)]
        self._fetcher = fetcher
        self._error_clear_delay = error_clear_delay
        self._schedule = schedule or _start_timer
        self._fetch_lock = threading.Lock()
        self._state_lock = threading.RLock()
        self._subscribers: list[Subscriber] = []
        self._error_generation: dict[int, int] = {}
        self._failed: set[int] = set()
        if total_match_count is None and not any("range" in f for f in self._files):
            known_total = None
        else:
            known_total = int(total_match_count or 0)
        self._state = NavigationState(
            search_id=search_id,
            total_match_count=known_total,
            more_files_to_open=self.next_pending_index() is not None,
        )

    # -- observation -----------------------------------------------------

    @property
    def state(self) -> NavigationState:
        with self._state_lock:
            return self._state

    @property
    def files(self) -> list[dict[str, Any]]:
        with self._state_lock:
            return [dict(f) for f in self._files]

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        with self._state_lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with self._state_lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    def _apply(self, compute: Callable[[NavigationState], dict[str, Any]]) -> NavigationState:
        """Replace the state with ``compute(current)`` under a single lock hold."""
        with self._state_lock:
            changes = compute(self._state)
            if not changes:
                return self._state
            self._state = replace(self._state, **changes)
            new_state = self._state
            subscribers = list(self._subscribers)
        for cb in subscribers:
            try:
                cb(new_state)
            except Exception:
                log.exception("Navigation subscriber failed")
        return new_state

    def _update(self, **changes: Any) -> NavigationState:
        return self._apply(lambda _state: changes)

    # -- lookups ---------------------------------------------------------

    def next_pending_index(self, *, skip: Iterable[int] = ()) -> int | None:
        skipped = set(skip)
        with self._state_lock:
            for i, f in enumerate(self._files):
                if i not in skipped and is_pending(f):
                    return i
        return None

    def file_index_for_match(self, match_index: int) -> int | None:
        with self._state_lock:
            for i, f in enumerate(self._files):
                rng = f.get("range")
                if not rng or len(rng) != 2:
                    continue
                if rng[0] <= match_index <= rng[1]:
                    return i
        return None

    def _check_index(self, file_index: int) -> None:
        if not 0 <= int(file_index) < len(self._files):
            raise KeyError(f"no file at index {file_index} in search {self.search_id}")

    # -- fetching --------------------------------------------------------

    def _fetch_locked(self, file_index: int, *, expand: bool) -> bool:
        """Fetch and highlight one pending file. Caller holds the fetch lock.

        Returns True only when the file's content was materialized by this
        call. A failure records the file so cursor steps pass over it.
        """
        with self._state_lock:
            file = dict(self._files[file_index])
        if not is_pending(file):
            return False

        def _begin(state: NavigationState) -> dict[str, Any]:
            errors = dict(state.error_messages)
            errors.pop(file_index, None)
            return {
                "fetch_in_flight": True,
                "running_files": state.running_files | {file_index},
                "error_messages": errors,
            }

        # the total cannot move while we hold the fetch lock
        start = (self._apply(_begin).total_match_count or 0) + 1
        try:
            processed, new_total = self._fetcher(file, start)
        except Exception as exc:
            record = ErrorRecord.from_exception("file_content", exc, message="Failed to get File Content")
            log.warning("Fetching content for file %s failed: %s", file.get("id"), exc)
            with self._state_lock:
                self._failed.add(file_index)
            self._set_file_error(file_index, record.detail())
            return False
        finally:
            self._apply(lambda state: {
                "fetch_in_flight": False,
                "running_files": state.running_files - {file_index},
            })

        processed = dict(processed, index=file_index)

        def _finish(state: NavigationState) -> dict[str, Any]:
            self._files[file_index] = processed
            self._failed.discard(file_index)
            expanded = state.expanded_files
            return {
                "total_match_count": int(new_total),
                "more_files_to_open": self.next_pending_index() is not None,
                "expanded_files": expanded | {file_index} if expand else expanded,
            }

        self._apply(_finish)
        return True

    def _fetch_next_for_cursor(self) -> int:
        """Fetch pending files in order until one succeeds; returns the total.

        Files that already failed are passed over, so each file is tried at
        most once per step.
        """
        while True:
            with self._state_lock:
                nxt = self.next_pending_index(skip=self._failed)
            if nxt is None or self._fetch_locked(nxt, expand=False):
                break
        return self.state.total_match_count or 0

    def _set_file_error(self, file_index: int, message: str) -> None:
        with self._state_lock:
            generation = self._error_generation.get(file_index, 0) + 1
            self._error_generation[file_index] = generation
        self._apply(lambda state: {"error_messages": {**state.error_messages, file_index: message}})

        def _drop(state: NavigationState) -> dict[str, Any]:
            if self._error_generation.get(file_index) != generation:
                return {}
            if file_index not in state.error_messages:
                return {}
            errors = dict(state.error_messages)
            del errors[file_index]
            return {"error_messages": errors}

        self._schedule(self._error_clear_delay, lambda: self._apply(_drop))

    def fetch_file_content(self, file_index: int) -> NavigationState:
        """User-initiated fetch of one file's content; opens its panel.

        Unlike cursor steps this retries a file whose earlier fetch failed.
        """
        self._check_index(file_index)
        if not self._fetch_lock.acquire(blocking=False):
            log.debug("Fetch for search %s already running; ignoring request", self.search_id)
            return self.state
        try:
            if not self._fetch_locked(file_index, expand=True):
                self._apply(lambda state: (
                    {} if is_pending(self._files[file_index])
                    else {"expanded_files": state.expanded_files | {file_index}}
                ))
        finally:
            self._fetch_lock.release()
        return self.state

    # -- navigation ------------------------------------------------------

    def step(self, direction: int) -> NavigationState:
        """Move the cursor one match forward (+1) or back (-1)."""
        if direction not in (1, -1):
            raise ValueError("direction must be 1 or -1")
        if not self._fetch_lock.acquire(blocking=False):
            log.debug("Fetch for search %s already running; ignoring step", self.search_id)
            return self.state
        try:
            if self.state.total_match_count is None:
                self._fetch_next_for_cursor()
                if self.state.total_match_count is None:
                    self._update(total_match_count=0)

            state = self.state
            total = state.total_match_count or 0
            candidate = state.current_index + direction
            if candidate > total:
                total = self._fetch_next_for_cursor()
                candidate = min(candidate, total)
            if candidate < 1:
                candidate = 1 if total >= 1 else 0

            def _move(state: NavigationState) -> dict[str, Any]:
                expanded = state.expanded_files
                active = None
                if candidate >= 1:
                    owner = self.file_index_for_match(candidate)
                    if owner is not None:
                        expanded = expanded | {owner}
                    active = marker_element_id(self.search_id, candidate)
                return {
                    "current_index": candidate,
                    "expanded_files": expanded,
                    "active_marker_id": active,
                }

            return self._apply(_move)
        finally:
            self._fetch_lock.release()

    def toggle_file(self, file_index: int) -> NavigationState:
        self._check_index(file_index)
        return self._apply(lambda state: {"expanded_files": state.expanded_files ^ {file_index}})
