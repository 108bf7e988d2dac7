"""Polymarket prediction markets via the Gamma API.

Each fetch compares the current probability and 24h volume of every market
against the previous observation stored in the cursor, and emits candidates
that are either newly created inside the window or have moved sharply.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from radar.connectors.base import (
    BaseConnector,
    ContentItemDraft,
    FetchParams,
    FetchResult,
    parse_datetime,
    to_iso,
    utcnow,
)
from radar.connectors.errors import ConnectorError, MalformedItemError, ProviderHTTPError, TransientHTTPError
from radar.connectors.values import as_bool, as_number, as_str, as_str_list, clamp, clamp_int, pick

logger = logging.getLogger(__name__)

GAMMA_MARKETS_URL = "https://gamma-api.polymarket.com/markets"
EVENT_URL = "https://polymarket.com/event/{slug}"
MARKET_URL = "https://polymarket.com/market/{condition_id}"
MAX_RETRIES = 3
CURSOR_CAP = 500


@dataclass(frozen=True)
class PolymarketSourceConfig:
    categories: Tuple[str, ...] = ()
    min_volume: float = 0
    min_liquidity: float = 0
    min_volume_24h: float = 0
    probability_change_threshold: float = 0
    include_resolved: bool = False
    include_restricted: bool = True
    include_new_markets: bool = True
    include_spike_markets: bool = True
    spike_probability_change_threshold: float = 10
    spike_volume_change_threshold: float = 100
    spike_min_volume_24h: float = 0
    spike_min_liquidity: float = 0
    max_markets_per_fetch: int = 50

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> PolymarketSourceConfig:
        def knob(snake: str, camel: str, lo: float, hi: float, default: float) -> float:
            return clamp(pick(config, snake, camel), lo, hi, default)

        return cls(
            categories=tuple(c.lower() for c in as_str_list(config.get("categories"))),
            min_volume=math.floor(knob("min_volume", "minVolume", 0, math.inf, 0)),
            min_liquidity=math.floor(knob("min_liquidity", "minLiquidity", 0, math.inf, 0)),
            min_volume_24h=knob("min_volume_24h", "minVolume24h", 0, math.inf, 0),
            probability_change_threshold=knob(
                "probability_change_threshold", "probabilityChangeThreshold", 0, 100, 0
            ),
            include_resolved=as_bool(pick(config, "include_resolved", "includeResolved"), False),
            include_restricted=as_bool(pick(config, "include_restricted", "includeRestricted"), True),
            include_new_markets=as_bool(pick(config, "include_new_markets", "includeNewMarkets"), True),
            include_spike_markets=as_bool(
                pick(config, "include_spike_markets", "includeSpikeMarkets"), True
            ),
            spike_probability_change_threshold=knob(
                "spike_probability_change_threshold", "spikeProbabilityChangeThreshold", 0, 100, 10
            ),
            spike_volume_change_threshold=knob(
                "spike_volume_change_threshold", "spikeVolumeChangeThreshold", 0, 10_000, 100
            ),
            spike_min_volume_24h=knob("spike_min_volume_24h", "spikeMinVolume24h", 0, math.inf, 0),
            spike_min_liquidity=knob("spike_min_liquidity", "spikeMinLiquidity", 0, math.inf, 0),
            max_markets_per_fetch=clamp_int(
                pick(config, "max_markets_per_fetch", "maxMarketsPerFetch"), 1, 200, 50
            ),
        )


def _number_map(value: Any) -> Dict[str, float]:
    if not isinstance(value, dict):
        return {}
    out: Dict[str, float] = {}
    for key, number in value.items():
        parsed = as_number(number)
        if parsed is not None:
            out[str(key)] = parsed
    return out


@dataclass
class PolymarketCursor:
    last_fetch_at: Optional[str] = None
    seen_condition_ids: List[str] = field(default_factory=list)
    last_prices: Dict[str, float] = field(default_factory=dict)
    last_volume_24h: Dict[str, float] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, cursor: Dict[str, Any]) -> PolymarketCursor:
        seen = cursor.get("seen_condition_ids")
        return cls(
            last_fetch_at=as_str(cursor.get("last_fetch_at")),
            seen_condition_ids=[s for s in seen if isinstance(s, str)] if isinstance(seen, list) else [],
            last_prices=_number_map(cursor.get("last_prices")),
            last_volume_24h=_number_map(cursor.get("last_volume_24h")),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.last_fetch_at:
            out["last_fetch_at"] = self.last_fetch_at
        if self.seen_condition_ids:
            out["seen_condition_ids"] = list(self.seen_condition_ids)
        if self.last_prices:
            out["last_prices"] = dict(self.last_prices)
        if self.last_volume_24h:
            out["last_volume_24h"] = dict(self.last_volume_24h)
        return out


def _tail(mapping: Dict[str, float], n: int) -> Dict[str, float]:
    keys = list(mapping)[-n:]
    return {k: mapping[k] for k in keys}


def parse_volume(value: Any) -> float:
    """Gamma volumes are cent amounts; return dollars."""
    number = as_number(value)
    return number / 100 if number is not None else 0.0


def parse_probability(value: Any) -> float:
    number = as_number(value)
    return number if number is not None else 0.0


def _json_list(value: Any) -> List[Any]:
    """Gamma encodes some arrays as JSON strings."""
    if isinstance(value, list):
        return value
    if isinstance(value, str) and value.strip().startswith("["):
        try:
            decoded = json.loads(value)
        except ValueError:
            return []
        return decoded if isinstance(decoded, list) else []
    return []


def market_probability(market: Dict[str, Any]) -> float:
    prices = _json_list(market.get("outcomePrices"))
    return parse_probability(prices[0]) if prices else 0.0


def probability_change(condition_id: str, current: float, last_prices: Dict[str, float]) -> Optional[float]:
    """Change in percentage points, or None without a previous observation."""
    if condition_id not in last_prices:
        return None
    return (current - last_prices[condition_id]) * 100


def volume_change(
    condition_id: str, current: float, last_volume: Dict[str, float]
) -> Tuple[Optional[float], Optional[float]]:
    """(percent change, absolute change); percent is None when the previous volume was 0."""
    if condition_id not in last_volume:
        return None, None
    previous = last_volume[condition_id]
    absolute = current - previous
    pct = absolute / previous * 100 if previous > 0 else None
    return pct, absolute


def spike_magnitude(candidate: Dict[str, Any]) -> float:
    # volume percent is scaled down to be comparable with probability points
    return max(
        abs(candidate["probabilityChangePP"] or 0),
        abs(candidate["volume24hChangePct"] or 0) / 10,
    )


def format_volume(volume: float) -> str:
    if volume >= 1_000_000:
        return f"${volume / 1_000_000:.1f}M"
    if volume >= 1000:
        return f"${volume / 1000:.0f}K"
    return f"${volume:.0f}"


def _signed(value: float, digits: int) -> str:
    return f"{'+' if value > 0 else ''}{value:.{digits}f}"


class PolymarketConnector(BaseConnector):
    source_type = "polymarket"

    async def _fetch_markets(self, limit: int, include_closed: bool) -> List[Dict[str, Any]]:
        query: Dict[str, str] = {"limit": str(limit), "active": "true"}
        if not include_closed:
            query["closed"] = "false"

        retrying = AsyncRetrying(
            retry=retry_if_exception_type(TransientHTTPError),
            stop=stop_after_attempt(MAX_RETRIES + 1),
            wait=wait_exponential(multiplier=1),
            sleep=self.sleep,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                resp = await self.http.get(
                    GAMMA_MARKETS_URL, params=query, headers={"Accept": "application/json"}
                )
                if resp.status == 429 or resp.status >= 500:
                    raise TransientHTTPError(resp.status, GAMMA_MARKETS_URL, resp.text)
        if not resp.ok:
            raise ProviderHTTPError(
                resp.status, GAMMA_MARKETS_URL, resp.text,
                message=f"Polymarket API fetch failed ({resp.status}): {resp.text[:500]}",
            )
        data = resp.json()
        if not isinstance(data, list):
            raise ConnectorError(f"Polymarket API returned unexpected data format: {type(data).__name__}")
        return [m for m in data if isinstance(m, dict)]

    def _passes_filters(self, market: Dict[str, Any], config: PolymarketSourceConfig) -> bool:
        volume = parse_volume(market.get("volume"))
        liquidity = parse_volume(market.get("liquidity"))
        volume_24h = parse_volume(market.get("volume24hr"))
        if config.min_volume > 0 and volume < config.min_volume:
            return False
        if config.min_liquidity > 0 and liquidity < config.min_liquidity:
            return False
        if config.min_volume_24h > 0 and volume_24h < config.min_volume_24h:
            return False
        if not config.include_restricted and market.get("restricted") is True:
            return False
        category = as_str(market.get("category"))
        if config.categories and category and category.lower() not in config.categories:
            return False
        return True

    def _detect_spike(
        self,
        market: Dict[str, Any],
        config: PolymarketSourceConfig,
        prob_change: Optional[float],
        vol_pct: Optional[float],
    ) -> Optional[str]:
        if not config.include_spike_markets:
            return None
        volume_24h = parse_volume(market.get("volume24hr"))
        liquidity = parse_volume(market.get("liquidity"))
        if volume_24h < config.spike_min_volume_24h or liquidity < config.spike_min_liquidity:
            return None
        prob_spike = prob_change is not None and abs(prob_change) >= config.spike_probability_change_threshold
        vol_spike = vol_pct is not None and abs(vol_pct) >= config.spike_volume_change_threshold
        if prob_spike and vol_spike:
            return "both"
        if prob_spike:
            return "probability"
        if vol_spike:
            return "volume"
        return None

    async def fetch(self, params: FetchParams) -> FetchResult:
        config = PolymarketSourceConfig.from_dict(params.config)
        cursor = PolymarketCursor.from_dict(params.cursor)
        seen = set(cursor.seen_condition_ids)
        new_seen = list(cursor.seen_condition_ids)
        new_prices = dict(cursor.last_prices)
        new_volumes = dict(cursor.last_volume_24h)
        observed_at = to_iso(params.window_end)

        spikes: List[Dict[str, Any]] = []
        fresh: List[Dict[str, Any]] = []
        try:
            markets = await self._fetch_markets(
                min(config.max_markets_per_fetch * 3, 200), config.include_resolved
            )
        except Exception as e:
            logger.error("polymarket: error fetching from Gamma API: %s", e)
            return FetchResult(raw_items=[], next_cursor=dict(params.cursor), meta={"error": str(e)})

        for market in markets:
            if market.get("archived"):
                continue
            condition_id = as_str(market.get("conditionId"))
            if not condition_id:
                continue
            probability = market_probability(market)
            volume_24h = parse_volume(market.get("volume24hr"))

            # prices are tracked for every market, emitted or not
            new_prices.pop(condition_id, None)
            new_prices[condition_id] = probability
            new_volumes.pop(condition_id, None)
            new_volumes[condition_id] = volume_24h
            if condition_id not in seen:
                new_seen.append(condition_id)

            if not self._passes_filters(market, config):
                continue

            is_new = False
            if config.include_new_markets:
                created = parse_datetime(market.get("createdAt"))
                is_new = condition_id not in seen and created is not None and created >= params.window_start

            prob_change = probability_change(condition_id, probability, cursor.last_prices)
            vol_pct, vol_abs = volume_change(condition_id, volume_24h, cursor.last_volume_24h)
            spike_reason = self._detect_spike(market, config, prob_change, vol_pct)
            if not is_new and spike_reason is None:
                continue

            candidate = {
                "market": market,
                "isNew": is_new,
                "isSpike": spike_reason is not None,
                "spikeReason": spike_reason,
                "probabilityChangePP": prob_change,
                "volume24hChangePct": vol_pct,
                "volume24hChangeAbs": vol_abs,
                "observedAt": observed_at,
            }
            (spikes if spike_reason else fresh).append(candidate)

        spikes.sort(key=spike_magnitude, reverse=True)
        epoch = datetime.min.replace(tzinfo=params.window_start.tzinfo)
        fresh.sort(key=lambda c: parse_datetime(c["market"].get("createdAt")) or epoch, reverse=True)
        combined = (spikes + fresh)[:config.max_markets_per_fetch]

        next_cursor = PolymarketCursor(
            last_fetch_at=to_iso(utcnow()),
            seen_condition_ids=new_seen[-CURSOR_CAP:],
            last_prices=_tail(new_prices, CURSOR_CAP),
            last_volume_24h=_tail(new_volumes, CURSOR_CAP),
        )
        logger.info(
            "polymarket: %d markets, %d spikes, %d new, emitting %d",
            len(markets), len(spikes), len(fresh), len(combined),
        )
        return FetchResult(
            raw_items=combined,
            next_cursor=next_cursor.to_dict(),
            meta={
                "markets_fetched": len(combined),
                "spike_count": len(spikes),
                "new_count": len(fresh),
                "filters_applied": {
                    "min_volume": config.min_volume,
                    "min_liquidity": config.min_liquidity,
                    "min_volume_24h": config.min_volume_24h,
                    "include_restricted": config.include_restricted,
                    "include_resolved": config.include_resolved,
                    "include_new_markets": config.include_new_markets,
                    "include_spike_markets": config.include_spike_markets,
                    "spike_probability_change_threshold": config.spike_probability_change_threshold,
                    "spike_volume_change_threshold": config.spike_volume_change_threshold,
                },
            },
        )

    def _title(self, market: Dict[str, Any], candidate: Dict[str, Any]) -> str:
        base = f"{market['question']} - {market_probability(market) * 100:.0f}%"
        reason = candidate["spikeReason"]
        if not candidate["isSpike"] or not reason:
            return base
        parts = []
        pp = candidate["probabilityChangePP"]
        vol_pct = candidate["volume24hChangePct"]
        if reason in ("probability", "both") and pp is not None:
            parts.append(f"{_signed(pp, 0)}pp")
        if reason in ("volume", "both") and vol_pct is not None:
            parts.append(f"vol {_signed(vol_pct, 0)}%")
        return f"{base} ({', '.join(parts)})" if parts else base

    def _body(self, market: Dict[str, Any], candidate: Dict[str, Any], days_left: Optional[int]) -> str:
        pp = candidate["probabilityChangePP"]
        vol_pct = candidate["volume24hChangePct"]
        vol_abs = candidate["volume24hChangeAbs"]
        reason = candidate["spikeReason"]
        lines = [market["question"]]

        description = as_str(market.get("description"))
        if description:
            lines.append("")
            lines.append(description[:500] + ("..." if len(description) > 500 else ""))

        if candidate["isSpike"] and reason:
            alert = "**Spike Alert**:"
            if reason in ("probability", "both"):
                alert += f" Probability moved {_signed(pp or 0, 1)}pp"
            if reason in ("volume", "both"):
                if reason == "both":
                    alert += " |"
                abs_str = f" ({format_volume(abs(vol_abs))})" if vol_abs is not None else ""
                alert += f" 24h volume {_signed(vol_pct or 0, 0)}%{abs_str}"
            lines += ["", alert]
        elif candidate["isNew"]:
            lines += ["", "**New Market**"]

        current = f"Current Probability: {market_probability(market) * 100:.1f}%"
        if pp is not None and not candidate["isSpike"]:
            current += f" ({_signed(pp, 1)}pp since last check)"
        lines += ["", current, "", "Market Stats:"]
        lines.append(f"  Volume: {format_volume(parse_volume(market.get('volume')))}")
        lines.append(f"  24h Volume: {format_volume(parse_volume(market.get('volume24hr')))}")
        lines.append(f"  Liquidity: {format_volume(parse_volume(market.get('liquidity')))}")
        lines.append(f"  Spread: {(as_number(market.get('spread')) or 0) * 100:.1f}%")
        if days_left is not None:
            lines.append(f"  Resolves in: {days_left} days")
        resolution_source = as_str(market.get("resolutionSource"))
        if resolution_source:
            lines.append(f"  Resolution Source: {resolution_source}")
        outcomes = [str(o) for o in _json_list(market.get("outcomes"))]
        lines += ["", f"Outcomes: {' / '.join(outcomes)}"]
        return "\n".join(lines)

    def normalize(self, raw: Any, params: FetchParams) -> ContentItemDraft:
        candidate = raw if isinstance(raw, dict) else {}
        market = candidate.get("market") if isinstance(candidate.get("market"), dict) else {}
        candidate = {
            "isNew": bool(candidate.get("isNew")),
            "isSpike": bool(candidate.get("isSpike")),
            "spikeReason": candidate.get("spikeReason"),
            "probabilityChangePP": as_number(candidate.get("probabilityChangePP")),
            "volume24hChangePct": as_number(candidate.get("volume24hChangePct")),
            "volume24hChangeAbs": as_number(candidate.get("volume24hChangeAbs")),
            "observedAt": as_str(candidate.get("observedAt")),
        }
        condition_id = as_str(market.get("conditionId"))
        question = as_str(market.get("question"))
        if not condition_id or not question:
            raise MalformedItemError(
                "Malformed Polymarket market: missing required fields (conditionId, question)"
            )

        probability = market_probability(market)
        end_date = parse_datetime(market.get("endDateIso") or market.get("endDate"))
        days_left = None
        if end_date is not None:
            remaining = (end_date - params.window_end).total_seconds() / 86400
            days_left = max(0, math.ceil(remaining))

        if candidate["isSpike"] and candidate["observedAt"]:
            published_at = candidate["observedAt"]
        else:
            published_at = to_iso(parse_datetime(market.get("createdAt")))

        events = market.get("events") if isinstance(market.get("events"), list) else []
        event = events[0] if events and isinstance(events[0], dict) else {}
        slug = as_str(event.get("slug"))
        canonical_url = EVENT_URL.format(slug=slug) if slug else MARKET_URL.format(condition_id=condition_id)

        pp = candidate["probabilityChangePP"]
        metadata: Dict[str, Any] = {
            "condition_id": condition_id,
            "question_id": market.get("questionID"),
            "question": question,
            "probability": probability,
            "probability_percent": probability * 100,
            "volume": parse_volume(market.get("volume")),
            "volume_24h": parse_volume(market.get("volume24hr")),
            "liquidity": parse_volume(market.get("liquidity")),
            "spread": as_number(market.get("spread")) or 0,
            "outcomes": _json_list(market.get("outcomes")),
            "outcome_prices": [parse_probability(p) for p in _json_list(market.get("outcomePrices"))],
            "is_active": market.get("active"),
            "is_closed": market.get("closed"),
            "resolution_status": "resolved" if market.get("closed") else "open",
            "end_date": market.get("endDateIso"),
            "is_new": candidate["isNew"],
            "is_spike": candidate["isSpike"],
            "spike_reason": candidate["spikeReason"],
            "probability_change_pp": pp,
            "volume_24h_change_pct": candidate["volume24hChangePct"],
            "volume_24h_change_abs": candidate["volume24hChangeAbs"],
            "market_created_at": market.get("createdAt"),
            "market_updated_at": market.get("updatedAt"),
            "is_restricted": bool(market.get("restricted", False)),
        }
        if pp is not None:
            metadata["probability_change"] = pp
        if days_left is not None:
            metadata["days_to_resolution"] = days_left
        if as_str(market.get("resolutionSource")):
            metadata["resolution_source"] = market["resolutionSource"]
        if event:
            metadata["event_id"] = event.get("id")
            metadata["event_slug"] = event.get("slug")
            metadata["event_title"] = event.get("title")

        market = dict(market, question=question)
        return ContentItemDraft(
            title=self._title(market, candidate),
            body_text=self._body(market, candidate, days_left),
            canonical_url=canonical_url,
            source_type=self.source_type,
            external_id=f"pm_{condition_id}",
            published_at=published_at,
            author="Polymarket",
            metadata=metadata,
            raw={
                "condition_id": condition_id,
                "question": question,
                "outcomes": market.get("outcomes"),
                "outcome_prices": market.get("outcomePrices"),
                "volume": market.get("volume"),
                "liquidity": market.get("liquidity"),
                "active": market.get("active"),
                "closed": market.get("closed"),
                "end_date": market.get("endDateIso"),
                "restricted": market.get("restricted"),
            },
        )
