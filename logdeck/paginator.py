"""Capped, resumable paginator over a PIT / search-after style search backend."""

import logging
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Protocol

from logdeck.emitter import Notice, NoticeLevel
from logdeck.models import LogEntry, REMOTE_SCHEME, entry_from_dict, is_remote
from logdeck.msg_filter import has_advanced_syntax, msg_matches

logger = logging.getLogger(__name__)

# Wire names that differ from the Python attribute names
_WIRE_NAMES = {
    "start": "from",
    "end": "to",
    "environment_case": "environmentCase",
    "allow_insecure_tls": "allowInsecureTLS",
    "keep_alive": "keepAlive",
    "track_total_hits": "trackTotalHits",
    "search_after": "searchAfter",
    "pit_session_id": "pitSessionId",
}


class LoadMode(Enum):
    APPEND = "append"
    REPLACE = "replace"


class PaginatorState(Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    EXHAUSTED = "exhausted"
    CAPPED = "capped"


@dataclass(frozen=True)
class SearchOptions:
    index: str = ""
    url: str | None = None
    size: int | None = None
    sort: str | None = None
    duration: str | None = None
    start: str | None = None
    end: str | None = None
    application_name: str | None = None
    logger: str | None = None
    level: str | None = None
    environment: str | None = None
    environment_case: str = "original"
    message: str | None = None
    allow_insecure_tls: bool = False
    keep_alive: str | None = None
    track_total_hits: bool | None = None
    search_after: Any = None
    pit_session_id: Any = None

    def to_request(self) -> dict:
        """Request payload with backend field names; unset fields are omitted."""
        return {
            _WIRE_NAMES.get(k, k): v
            for k, v in asdict(self).items()
            if v is not None and v != ""
        }


@dataclass(frozen=True)
class SearchResponse:
    ok: bool
    entries: list = field(default_factory=list)
    has_more: bool = False
    next_search_after: Any = None
    pit_session_id: Any = None
    total: int | None = None
    error: str | None = None

    @classmethod
    def coerce(cls, data) -> "SearchResponse":
        if isinstance(data, SearchResponse):
            return data
        if not isinstance(data, Mapping):
            return cls(ok=False, error=f"Unexpected response type {type(data).__name__}")
        total = data.get("total")
        entries = data.get("entries")
        return cls(
            ok=bool(data.get("ok")),
            entries=list(entries) if isinstance(entries, (list, tuple)) else [],
            has_more=bool(data.get("hasMore")),
            next_search_after=data.get("nextSearchAfter") or None,
            pit_session_id=data.get("pitSessionId") or None,
            total=int(total) if isinstance(total, (int, float)) and not isinstance(total, bool) else None,
            error=data.get("error"),
        )


class SearchBackend(Protocol):
    async def search(self, options: SearchOptions) -> SearchResponse | Mapping: ...

    async def close_session(self, handle) -> None: ...


class IngestSink(Protocol):
    def append(self, batch, ignore_existing_for_remote: bool = False) -> list: ...

    def clear(self) -> None: ...

    def remote_count(self) -> int: ...


@dataclass
class PaginationState:
    has_more: bool = False
    continuation_token: Any = None
    session_handle: Any = None
    total_known: int | None = None
    baseline: int = 0
    budget: int = 1000


@dataclass(frozen=True)
class SearchOutcome:
    ok: bool
    state: PaginatorState
    ingested: int = 0
    error: str | None = None
    skipped: bool = False


class RemoteSearchPaginator:
    """Drives the multi-page fetch loop while keeping remote entries within budget.

    States:
    - IDLE: nothing running; also where a failed or stalled sequence rests, keeping
      its continuation token so ``fetch_more`` can resume.
    - FETCHING: a page sequence is in flight. A busy flag rejects any other
      ``start_search``/``fetch_more`` call until it finishes.
    - CAPPED: the budget ran out; more results may exist but were not fetched.
    - EXHAUSTED: the backend reported no more pages; the session handle is dropped.
    """

    def __init__(
        self,
        sink: IngestSink,
        backend: SearchBackend,
        budget: int = 1000,
        page_size: int = 1000,
        notify: Callable[[Notice], None] | None = None,
    ):
        if budget < 0 or page_size <= 0:
            raise ValueError("budget must be >= 0 and page_size > 0")
        self._sink = sink
        self._backend = backend
        self._page_size = page_size
        self._notify = notify
        self._pagination = PaginationState(budget=budget)
        self._state = PaginatorState.IDLE
        self._options: SearchOptions | None = None
        self._first_page_pending = False
        self._busy = False

    @property
    def state(self) -> PaginatorState:
        return self._state

    @property
    def pagination(self) -> PaginationState:
        return replace(self._pagination)

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def last_options(self) -> SearchOptions | None:
        return self._options

    @property
    def budget(self) -> int:
        return self._pagination.budget

    def set_budget(self, budget: int):
        if budget < 0:
            raise ValueError("budget must be >= 0")
        self._pagination.budget = budget

    def available(self) -> int:
        return max(0, self._pagination.budget - self._sink.remote_count())

    def progress(self) -> dict:
        loaded = max(0, self._sink.remote_count() - self._pagination.baseline)
        target = max(1, self._pagination.budget)
        return {
            "loaded": loaded,
            "target": target,
            "percent": min(100, round(loaded / target * 100)),
            "total": self._pagination.total_known,
        }

    def reset(self):
        """Forget pagination progress (store clear). Does not touch an in-flight loop's busy flag."""
        if self._pagination.session_handle is not None:
            logger.debug("Dropping session handle on reset")
        self._pagination = PaginationState(budget=self._pagination.budget)
        self._options = None
        self._first_page_pending = False
        if not self._busy:
            self._state = PaginatorState.IDLE

    async def close_session(self):
        """Best-effort close of the open session handle; failures are only logged."""
        handle = self._pagination.session_handle
        if handle is None:
            return
        self._pagination.session_handle = None
        try:
            await self._backend.close_session(handle)
        except Exception as e:
            logger.warning("Closing search session failed: %s", e)

    async def start_search(self, options: SearchOptions, mode: LoadMode = LoadMode.APPEND) -> SearchOutcome:
        mode = LoadMode(mode)
        if self._busy:
            logger.info("Search ignored: another page sequence is in flight")
            return SearchOutcome(ok=False, state=self._state, error="busy", skipped=True)

        prior = self._state
        self._busy = True
        try:
            if mode is LoadMode.REPLACE:
                await self.close_session()
                self._sink.clear()
                baseline = 0
            else:
                baseline = self._sink.remote_count()

            budget = self._pagination.budget
            self._pagination = PaginationState(baseline=baseline, budget=budget)
            self._options = replace(options, search_after=None, pit_session_id=None)
            available = max(0, budget - baseline)
            logger.info(
                "Search started: mode=%s index=%s baseline=%d available=%d",
                mode.value, options.index, baseline, available,
            )

            if available == 0:
                self._first_page_pending = True
                self._state = PaginatorState.CAPPED
                logger.info("Remote entries already at budget %d, nothing fetched", budget)
                return SearchOutcome(ok=True, state=self._state)

            self._first_page_pending = False
            return await self._run(
                self._options, available, ignore_existing=mode is LoadMode.REPLACE,
                from_first_page=True, prior=prior,
            )
        finally:
            self._busy = False

    async def fetch_more(self) -> SearchOutcome:
        """Resume from the retained continuation token after the budget was raised."""
        if self._busy:
            logger.info("Load more ignored: another page sequence is in flight")
            return SearchOutcome(ok=False, state=self._state, error="busy", skipped=True)
        if self._options is None:
            return SearchOutcome(ok=False, state=self._state, error="no search to continue", skipped=True)

        prior = self._state
        self._busy = True
        try:
            available = self.available()
            if not self._first_page_pending and not self._pagination.has_more:
                self._pagination.session_handle = None
                self._state = PaginatorState.EXHAUSTED
                return SearchOutcome(ok=True, state=self._state)
            if available == 0:
                self._state = PaginatorState.CAPPED
                logger.info("Load more skipped: budget %d reached", self._pagination.budget)
                return SearchOutcome(ok=True, state=self._state)

            from_first_page = self._first_page_pending
            self._first_page_pending = False
            return await self._run(
                self._options, available, ignore_existing=False,
                from_first_page=from_first_page, prior=prior,
            )
        finally:
            self._busy = False

    def _page_request(self, options: SearchOptions, p: PaginationState, available: int) -> SearchOptions:
        size = min(options.size or self._page_size, available)
        return replace(
            options,
            size=size,
            search_after=p.continuation_token,
            pit_session_id=p.session_handle,
        )

    async def _run(
        self,
        options: SearchOptions,
        available: int,
        ignore_existing: bool,
        from_first_page: bool,
        prior: PaginatorState,
    ) -> SearchOutcome:
        """Fetch pages until the budget or the results run out.

        ``options`` and the pagination record are held locally, so a ``reset`` while a
        request is outstanding does not stop the response from being ingested.
        """
        p = self._pagination
        self._state = PaginatorState.FETCHING
        ingested = 0
        first = True

        while available > 0:
            request = self._page_request(options, p, available)
            try:
                response = SearchResponse.coerce(await self._backend.search(request))
            except Exception as e:
                logger.warning("Search request failed: %s", e, exc_info=True)
                return self._fail(str(e) or type(e).__name__, ingested, p, prior, from_first_page and first)
            if not response.ok:
                return self._fail(response.error or "unknown error", ingested, p, prior, from_first_page and first)

            p.has_more = response.has_more
            p.continuation_token = response.next_search_after
            if response.pit_session_id is not None:
                p.session_handle = response.pit_session_id
            if response.total is not None:
                p.total_known = response.total

            page = self._prepare_page(options, response.entries)
            take = page[:available]
            accepted = self._sink.append(take, ignore_existing_for_remote=ignore_existing and first) if take else []
            count = len(accepted)
            available -= count
            ingested += count
            first = False
            logger.debug(
                "Page: received=%d kept=%d accepted=%d available=%d has_more=%s",
                len(response.entries), len(page), count, available, p.has_more,
            )

            if not p.has_more:
                break
            if not response.entries:
                logger.warning("Backend returned an empty page that claims more results; stopping")
                self._state = PaginatorState.IDLE
                return SearchOutcome(ok=True, state=self._state, ingested=ingested)

        if not p.has_more:
            p.session_handle = None
        if p is not self._pagination:
            # reset while fetching: the progress recorded in ``p`` was dropped
            self._state = PaginatorState.IDLE
        elif available <= 0:
            self._state = PaginatorState.CAPPED
        elif not p.has_more:
            self._state = PaginatorState.EXHAUSTED
        logger.info("Search finished: ingested=%d state=%s", ingested, self._state.value)
        return SearchOutcome(ok=True, state=self._state, ingested=ingested)

    def _prepare_page(self, options: SearchOptions, records) -> list[LogEntry]:
        """Coerce records to remote-origin entries and apply advanced message expressions."""
        tag = f"{REMOTE_SCHEME}{options.index or 'search'}"
        entries = []
        for record in records:
            if isinstance(record, Mapping):
                record = entry_from_dict(record, source=tag)
            elif not isinstance(record, LogEntry):
                continue
            if not is_remote(record):
                record = replace(record, source=tag)
            entries.append(record)

        expr = (options.message or "").strip()
        if expr and has_advanced_syntax(expr):
            entries = [e for e in entries if msg_matches(e.message, expr)]
        return entries

    def _fail(
        self,
        error: str,
        ingested: int,
        p: PaginationState,
        prior: PaginatorState,
        first_page_failed: bool,
    ) -> SearchOutcome:
        """Stop the loop, keeping the last recorded token and the state the call started in."""
        if p is self._pagination:
            self._state = prior
            if first_page_failed:
                self._first_page_pending = True
        else:
            self._state = PaginatorState.IDLE
        logger.warning("Search stopped after %d entries: %s", ingested, error)
        if self._notify is not None:
            self._notify(Notice(NoticeLevel.WARNING, f"Search failed: {error}"))
        return SearchOutcome(ok=False, state=self._state, ingested=ingested, error=error)
