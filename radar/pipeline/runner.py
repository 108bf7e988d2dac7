"""Run one source end to end: fetch raw items, normalize them to drafts.

Storage, dedup and scheduling live outside this package; the runner only
drives the connector contract and reports what happened.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from radar.connectors.base import BaseConnector, ContentItemDraft, FetchParams

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 300


@dataclass
class SourceRunResult:
    """Outcome of one fetch + normalize pass for a single source."""

    source_id: str
    source_type: str
    drafts: List[ContentItemDraft] = field(default_factory=list)
    next_cursor: Dict[str, Any] = field(default_factory=dict)
    meta: Dict[str, Any] = field(default_factory=dict)
    fetched: int = 0
    normalized: int = 0
    errors: int = 0
    error_message: Optional[str] = None
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error_message is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_id": self.source_id,
            "source_type": self.source_type,
            "fetched": self.fetched,
            "normalized": self.normalized,
            "errors": self.errors,
            "error_message": self.error_message,
            "duration_seconds": round(self.duration_seconds, 3),
            "next_cursor": self.next_cursor,
            "meta": self.meta,
            "items": [d.to_dict() for d in self.drafts],
        }


def normalize_items(
    connector: BaseConnector, raw_items: List[Any], params: FetchParams
) -> tuple:
    """Normalize each raw item; failures are logged and counted, not raised.

    Returns (drafts, failure_count).
    """
    drafts: List[ContentItemDraft] = []
    failures = 0
    for raw in raw_items:
        try:
            drafts.append(connector.normalize(raw, params))
        except Exception as e:
            failures += 1
            logger.warning("Failed to normalize %s item for %s: %s", connector.source_type, params.source_id, e)
    return drafts, failures


async def run_source(
    connector: BaseConnector,
    params: FetchParams,
    timeout: Optional[float] = DEFAULT_TIMEOUT,
) -> SourceRunResult:
    """Fetch and normalize a single source.

    A failed fetch leaves ``next_cursor`` equal to the incoming cursor so the
    next run retries the same range.
    """
    result = SourceRunResult(
        source_id=params.source_id,
        source_type=connector.source_type,
        next_cursor=dict(params.cursor),
    )
    t0 = time.monotonic()

    try:
        fetch = connector.fetch(params)
        fetched = await (asyncio.wait_for(fetch, timeout=timeout) if timeout else fetch)
    except asyncio.TimeoutError:
        result.error_message = f"Source {params.source_id} fetch timed out after {timeout}s"
        result.errors = 1
        logger.error(result.error_message)
    except Exception as e:
        result.error_message = str(e)
        result.errors = 1
        logger.error("Source %s failed: %s", params.source_id, e)
    else:
        result.fetched = len(fetched.raw_items)
        result.meta = dict(fetched.meta)
        result.next_cursor = dict(fetched.next_cursor)
        result.drafts, result.errors = normalize_items(connector, fetched.raw_items, params)
        result.normalized = len(result.drafts)
        if "error" in fetched.meta:
            logger.warning("Source %s reported: %s", params.source_id, fetched.meta["error"])
        logger.info(
            "Source %s (%s): fetched=%d, normalized=%d, errors=%d",
            params.source_id, connector.source_type, result.fetched, result.normalized, result.errors,
        )

    result.duration_seconds = time.monotonic() - t0
    return result
