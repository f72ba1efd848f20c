"""FolderSearchEngine — bounded depth-first header search across all accounts."""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any

from mailbridge.sanitize import strip_control_chars
from mailbridge.store.models import MessageHeader
from mailbridge.store.protocol import Folder, FolderTree

logger = logging.getLogger(__name__)

DEFAULT_MAX_RESULTS = 50
MAX_RESULTS_CAP = 200
# Hard cap on records collected across all folders, whatever maxResults says.
COLLECTION_CAP = 1000

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


# ── Query parsing ──────────────────────────────────────────────────────────────


def _to_us(moment: datetime) -> int:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return (moment - _EPOCH) // timedelta(microseconds=1)


def parse_start_date(value: str | None) -> int | None:
    """ISO-8601 lower bound in microseconds; ``None`` when absent or unparseable.

    Values without an offset are read as UTC.
    """
    if not value:
        return None
    try:
        return _to_us(datetime.fromisoformat(value))
    except (TypeError, ValueError):
        logger.debug("Ignoring unparseable startDate %r", value)
        return None


def parse_end_date(value: str | None) -> int | None:
    """ISO-8601 upper bound in microseconds (inclusive).

    A date with no time component covers that whole day: the bound becomes the
    last microsecond before the next midnight.
    """
    if not value:
        return None
    try:
        day = date.fromisoformat(value.strip())
    except ValueError:
        pass
    else:
        next_midnight = datetime.combine(day + timedelta(days=1), datetime.min.time())
        return _to_us(next_midnight) - 1
    try:
        return _to_us(datetime.fromisoformat(value))
    except (TypeError, ValueError):
        logger.debug("Ignoring unparseable endDate %r", value)
        return None


def clamp_max_results(value: Any) -> int:
    """Floor and clamp to ``[1, MAX_RESULTS_CAP]``; non-numeric → the default."""
    if isinstance(value, bool):
        return DEFAULT_MAX_RESULTS
    try:
        requested = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return DEFAULT_MAX_RESULTS
    return max(1, min(requested, MAX_RESULTS_CAP))


def iso_date(date_us: int) -> str | None:
    """Render a microsecond timestamp as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""
    if not date_us:
        return None
    moment = _EPOCH + timedelta(microseconds=date_us)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class SearchQuery:
    """A normalised searchMessages request."""

    text: str = ""
    start_us: int | None = None
    end_us: int | None = None
    max_results: int = DEFAULT_MAX_RESULTS
    descending: bool = True

    @classmethod
    def from_arguments(
        cls,
        query: str | None = "",
        start_date: str | None = None,
        end_date: str | None = None,
        max_results: Any = None,
        sort_order: str | None = None,
    ) -> "SearchQuery":
        return cls(
            text=(query or "").lower(),
            start_us=parse_start_date(start_date),
            end_us=parse_end_date(end_date),
            max_results=clamp_max_results(max_results),
            descending=sort_order != "asc",
        )

    def matches(self, header: MessageHeader) -> bool:
        """Date filter first (cheap), text filter second."""
        if self.start_us is not None and header.date_us < self.start_us:
            return False
        if self.end_us is not None and header.date_us > self.end_us:
            return False
        if not self.text:
            return True
        return any(
            self.text in (value or "").lower()
            for value in (
                header.decoded_subject or header.subject,
                header.decoded_author or header.author,
                header.decoded_recipients or header.recipients,
                header.cc_list,
            )
        )


# ── Engine ─────────────────────────────────────────────────────────────────────


class FolderSearchEngine:
    """Walks a folder hierarchy and collects headers that match a ``SearchQuery``.

    The walk is an explicit-stack, pre-order traversal so a deep tree cannot
    exhaust the interpreter stack. Correctness under a stale or partially
    unreadable index wins over completeness: refresh is advisory, and a folder
    that raises is skipped rather than failing the whole search.

    Usage::

        engine = FolderSearchEngine(store)
        records = engine.search([store.root_folder(a) for a in store.accounts()],
                                SearchQuery.from_arguments("invoice"))
    """

    def __init__(self, tree: FolderTree, collection_cap: int = COLLECTION_CAP) -> None:
        self._tree = tree
        self._cap = collection_cap

    def search(self, roots: list[Folder], query: SearchQuery) -> list[dict[str, Any]]:
        """Return at most ``query.max_results`` records, sorted by date."""
        collected: list[tuple[int, dict[str, Any]]] = []

        for root in roots:
            if len(collected) >= self._cap:
                break
            self._walk(root, query, collected)

        collected.sort(key=lambda item: item[0], reverse=query.descending)
        logger.debug("Search %r: %d collected, returning up to %d",
                     query.text, len(collected), query.max_results)
        return [record for _, record in collected[: query.max_results]]

    # ── Internal ───────────────────────────────────────────────────────────────

    def _walk(
        self,
        root: Folder,
        query: SearchQuery,
        collected: list[tuple[int, dict[str, Any]]],
    ) -> None:
        stack: list[Folder] = [root]
        while stack:
            if len(collected) >= self._cap:
                return
            folder = stack.pop()
            self._scan_folder(folder, query, collected)
            if len(collected) >= self._cap:
                return
            try:
                children = self._tree.list_children(folder)
            except Exception as exc:  # noqa: BLE001
                logger.debug("Skipping children of %s: %s", folder.uri, exc)
                continue
            # Reversed so the first child is popped (visited) first.
            stack.extend(reversed(children))

    def _scan_folder(
        self,
        folder: Folder,
        query: SearchQuery,
        collected: list[tuple[int, dict[str, Any]]],
    ) -> None:
        try:
            self._tree.refresh(folder)
        except Exception as exc:  # noqa: BLE001
            logger.debug("Refresh of %s failed, reading possibly stale index: %s",
                         folder.uri, exc)

        try:
            for header in self._tree.scan_messages(folder):
                if len(collected) >= self._cap:
                    break
                if query.matches(header):
                    collected.append((header.date_us, search_record(header, folder)))
        except Exception as exc:  # noqa: BLE001
            logger.debug("Skipping inaccessible folder %s: %s", folder.uri, exc)


def search_record(header: MessageHeader, folder: Folder) -> dict[str, Any]:
    """The searchMessages result shape for one header."""
    return {
        "id": header.message_id,
        "subject": strip_control_chars(header.decoded_subject or header.subject),
        "author": strip_control_chars(header.decoded_author or header.author),
        "recipients": strip_control_chars(header.decoded_recipients or header.recipients),
        "ccList": strip_control_chars(header.cc_list),
        "date": iso_date(header.date_us),
        "folder": folder.name,
        "folderPath": folder.uri,
        "read": header.is_read,
        "flagged": header.is_flagged,
    }
