"""
Price research from comparable listings.

A free-text description is broken into search terms, searched in several
fallback tiers at once, and the merged comparables are reduced to a
suggested price with a confidence grade.

Tiers, most to least specific (priority weight in brackets):
    original   the literal query (4)
    brand_part brand + part number (3)
    part       part number alone (2)
    brand_model brand + model + product type (1)
"""

import asyncio
import logging
import re
import statistics
from collections import Counter, defaultdict
from typing import Any, Dict, Iterable, List, Optional, Sequence

from crosslist.core.enums import Confidence
from crosslist.integrations.base import PlatformAdapter
from crosslist.schemas.pricing import (
    Comparable,
    QueryAnalysis,
    ScoredComparable,
    SearchTier,
    SuggestedPrice,
)

logger = logging.getLogger(__name__)

TIER_PRIORITIES = {
    "original": 4,
    "brand_part": 3,
    "part": 2,
    "brand_model": 1,
}
CONDITION_MATCH_BONUS = 1
MAX_RETURNED_COMPARABLES = 20

KNOWN_BRANDS = [
    # Music gear
    "Fender", "Gibson", "Epiphone", "Ibanez", "Yamaha", "Roland", "Korg", "Boss",
    "Marshall", "Vox", "Orange", "Mesa Boogie", "PRS", "Gretsch", "Rickenbacker",
    "Martin", "Taylor", "Squier", "Jackson", "ESP", "Schecter", "Shure", "Sennheiser",
    "Audio-Technica", "Neumann", "AKG", "Electro-Harmonix", "MXR", "Dunlop", "Strymon",
    "Line 6", "Moog", "Nord", "Behringer", "Focusrite", "Universal Audio",
    # Electronics and cameras
    "Apple", "Samsung", "Sony", "Canon", "Nikon", "Fujifilm", "Panasonic", "Olympus",
    "Bose", "Dell", "HP", "Lenovo", "Microsoft", "Nintendo", "Google", "Garmin", "GoPro",
    # Fashion
    "Nike", "Adidas", "New Balance", "Patagonia", "The North Face", "Levi's", "Coach",
    "Gucci", "Louis Vuitton", "Prada", "Rolex", "Omega", "Seiko", "Casio",
]

PRODUCT_TYPES = [
    "electric guitar", "acoustic guitar", "bass guitar", "guitar", "bass", "amplifier",
    "amp", "pedal", "effects pedal", "microphone", "mic", "headphones", "synthesizer",
    "synth", "keyboard", "drum machine", "mixer", "audio interface", "speaker", "monitor",
    "camera", "lens", "laptop", "tablet", "phone", "smartphone", "console", "watch",
    "sneakers", "shoes", "jacket", "handbag", "bag",
]

STOPWORDS = {
    "a", "an", "and", "the", "with", "for", "in", "of", "on", "w", "w/", "lot",
    "used", "new", "vintage", "excellent", "good", "great", "mint", "condition",
    "original", "genuine", "authentic", "rare", "free", "shipping",
}

TOKEN_RE = re.compile(r"[A-Za-z0-9][A-Za-z0-9\-/.']*")
YEAR_RE = re.compile(r"^(?:19|20)\d{2}$")
YEAR_RANGE_RE = re.compile(r"^(?:19|20)\d{2}[-/](?:(?:19|20)?\d{2})$")
DECADE_RE = re.compile(r"^(?:19|20)\d0'?s$", re.IGNORECASE)
UNIT_RE = re.compile(
    r"^\d+(?:\.\d+)?(?:gb|tb|mb|kb|mm|cm|in|inch|ft|w|kw|v|hz|khz|mhz|ghz|ml|oz|lb|lbs|kg|mah|mp|k|x)$",
    re.IGNORECASE,
)


def _tokens(text: str) -> List[str]:
    return [t.rstrip(".'-/") for t in TOKEN_RE.findall(text or "") if t.rstrip(".'-/")]


def _is_year(token: str) -> bool:
    return bool(YEAR_RE.match(token))


def _is_part_number(token: str) -> bool:
    """Alphanumeric codes like SM57, DT-770 or 0113902; never years, year ranges or measures."""
    if len(token) < 4 or not any(c.isdigit() for c in token):
        return False
    if _is_year(token) or YEAR_RANGE_RE.match(token) or DECADE_RE.match(token) or UNIT_RE.match(token):
        return False
    if not re.match(r"^[A-Za-z0-9][A-Za-z0-9\-/.]*$", token):
        return False
    has_alpha = any(c.isalpha() for c in token)
    digits_only = re.sub(r"[\-/.]", "", token)
    # Bare numbers need to be long enough not to be a quantity or a price
    return has_alpha or (digits_only.isdigit() and len(digits_only) >= 5)


def _find_phrase(phrases: Iterable[str], text: str) -> Optional[str]:
    """Longest phrase found in ``text`` on word boundaries, case-insensitive."""
    lowered = f" {text.lower()} "
    for phrase in sorted(phrases, key=len, reverse=True):
        if re.search(r"(?<![a-z0-9])" + re.escape(phrase.lower()) + r"(?![a-z0-9])", lowered):
            return phrase
    return None


def _normalize_condition(value: Optional[str]) -> str:
    return re.sub(r"[\s_\-]+", " ", (value or "").strip().lower())


def _condition_matches(requested: Optional[str], actual: Optional[str]) -> bool:
    requested, actual = _normalize_condition(requested), _normalize_condition(actual)
    if not requested or not actual:
        return False
    return requested == actual or requested in actual


def _discount_rate(cv: float) -> float:
    if cv < 0.15:
        return 0.01
    if cv < 0.30:
        return 0.02
    if cv < 0.50:
        return 0.03
    return 0.04


def _confidence(sample_size: int, cv: float) -> Confidence:
    if sample_size >= 10 and cv < 0.3:
        return Confidence.HIGH
    if sample_size >= 5:
        return Confidence.MEDIUM
    return Confidence.LOW


def aggregate_prices(prices: Sequence[Any]) -> SuggestedPrice:
    """
    Reduce raw comparable prices to a suggested price.

    Non-numeric and non-positive prices are ignored. The suggestion is the
    average of median and mean, less a competitive discount of 1% to 4%
    that grows with the coefficient of variation.

    Example:
        [18, 20, 20, 22, 60] -> median 20, mean 28, weighted 24, cv 0.57,
        4% discount, suggested 23.04, confidence medium
    """
    valid = []
    for price in prices:
        if isinstance(price, bool):
            continue
        try:
            value = float(price)
        except (TypeError, ValueError):
            continue
        if value > 0 and value == value and value != float("inf"):
            valid.append(value)
    valid.sort()

    if not valid:
        return SuggestedPrice(
            suggested_price=0.0,
            confidence=Confidence.LOW,
            reason="Not enough data: no comparable listings with a usable price were found",
        )

    median = statistics.median(valid)
    mean = statistics.fmean(valid)
    std_dev = statistics.pstdev(valid) if len(valid) > 1 else 0.0
    cv = std_dev / mean if mean > 0 else 0.0
    weighted = 0.5 * median + 0.5 * mean
    discount = _discount_rate(cv)
    confidence = _confidence(len(valid), cv)

    reason = None
    if confidence == Confidence.LOW:
        reason = f"Low confidence: only {len(valid)} comparable price(s) found"

    return SuggestedPrice(
        suggested_price=round(weighted * (1 - discount), 2),
        weighted_price=round(weighted, 2),
        median=round(median, 2),
        mean=round(mean, 2),
        std_dev=round(std_dev, 2),
        coefficient_of_variation=round(cv, 4),
        discount_rate=discount,
        price_min=valid[0],
        price_max=valid[-1],
        sample_size=len(valid),
        confidence=confidence,
        reason=reason,
    )


class PriceResearchEngine:
    """Suggests a price from one platform's comparables."""

    def __init__(
        self,
        adapter: Optional[PlatformAdapter],
        timeout: float = 20.0,
        tier_timeout: Optional[float] = None,
        default_limit: int = 50,
    ):
        self.adapter = adapter
        self.timeout = timeout
        self.tier_timeout = tier_timeout or timeout
        self.default_limit = default_limit

    # ------------------------------------------------------------------
    # Query analysis
    # ------------------------------------------------------------------
    def analyze_query(self, query: str, brand: Optional[str] = None) -> QueryAnalysis:
        tokens = _tokens(query)

        part_numbers = []
        for token in tokens:
            if _is_part_number(token) and token.upper() not in (p.upper() for p in part_numbers):
                part_numbers.append(token)

        year = None
        for token in tokens:
            if _is_year(token):
                year = token
                break
            if YEAR_RANGE_RE.match(token):
                year = token[:4]
                break

        found_brand = brand.strip() if brand and brand.strip() else _find_phrase(KNOWN_BRANDS, query)
        product_type = _find_phrase(PRODUCT_TYPES, query)

        # Model: first leftover word once brand, type, codes and years are removed
        consumed = set()
        for phrase in (found_brand, product_type):
            if phrase:
                consumed.update(t.lower() for t in _tokens(phrase))
        consumed.update(p.lower() for p in part_numbers)

        model = None
        for token in tokens:
            lowered = token.lower()
            if lowered in consumed or lowered in STOPWORDS:
                continue
            if _is_year(token) or YEAR_RANGE_RE.match(token) or UNIT_RE.match(token):
                continue
            if len(token) < 2 or token.isdigit():
                continue
            model = token
            break
        if model is None and part_numbers:
            model = part_numbers[0]

        return QueryAnalysis(
            original_query=query.strip(),
            brand=found_brand,
            model=model,
            part_numbers=part_numbers,
            year=year,
            product_type=product_type,
        )

    def build_search_tiers(self, analysis: QueryAnalysis) -> List[SearchTier]:
        candidates = [("original", analysis.original_query)]
        part = analysis.part_numbers[0] if analysis.part_numbers else None
        if analysis.brand and part:
            candidates.append(("brand_part", f"{analysis.brand} {part}"))
        if part:
            candidates.append(("part", part))
        broad = [p for p in (analysis.brand, analysis.model, analysis.product_type) if p]
        if len(broad) >= 2:
            candidates.append(("brand_model", " ".join(broad)))

        tiers: List[SearchTier] = []
        seen = set()
        for name, query in candidates:
            query = " ".join(query.split())
            key = query.lower()
            if not query or key in seen:
                continue
            seen.add(key)
            tiers.append(SearchTier(name=name, query=query, priority=TIER_PRIORITIES[name]))
        return tiers

    # ------------------------------------------------------------------
    # Research
    # ------------------------------------------------------------------
    async def research_item_price(
        self,
        query: str,
        brand: Optional[str] = None,
        condition: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> SuggestedPrice:
        """
        Never raises for lack of data: no comparables yields a zero price
        with low confidence and a reason.
        """
        analysis = self.analyze_query(query, brand)
        tiers = self.build_search_tiers(analysis)
        limit = limit or self.default_limit

        if self.adapter is None:
            logger.warning("No platform adapter configured for price research")
            results: List[List[Comparable]] = [[] for _ in tiers]
        else:
            filters = {"condition": condition} if condition else None
            results = await self._run_tiers(tiers, filters, limit)

        merged = self.merge_comparables(tiers, results, condition)
        logger.info(
            f"Price research for '{analysis.original_query}': {len(tiers)} tiers, "
            f"{sum(len(r) for r in results)} results, {len(merged)} unique comparables"
        )
        return self._suggest(analysis, tiers, merged)

    async def _run_tiers(
        self,
        tiers: List[SearchTier],
        filters: Optional[Dict[str, Any]],
        limit: int,
    ) -> List[List[Comparable]]:
        tasks = [asyncio.create_task(self._search_tier(tier, filters, limit)) for tier in tiers]
        if not tasks:
            return []
        done, pending = await asyncio.wait(tasks, timeout=self.timeout)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning(f"Price research deadline reached; cancelled {len(pending)} tier(s)")
            await asyncio.gather(*pending, return_exceptions=True)
        return [task.result() if task in done else [] for task in tasks]

    async def _search_tier(
        self,
        tier: SearchTier,
        filters: Optional[Dict[str, Any]],
        limit: int,
    ) -> List[Comparable]:
        try:
            return await asyncio.wait_for(
                self.adapter.search_comparables(tier.query, filters=filters, limit=limit),
                timeout=self.tier_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Search tier '{tier.name}' ({tier.query}) timed out")
            return []
        except Exception as e:
            # One tier failing must not sink the others
            logger.warning(f"Search tier '{tier.name}' ({tier.query}) failed: {e}")
            return []

    def merge_comparables(
        self,
        tiers: List[SearchTier],
        results: List[List[Comparable]],
        condition: Optional[str] = None,
    ) -> List[ScoredComparable]:
        merged: Dict[str, ScoredComparable] = {}
        for tier, comparables in zip(tiers, results):
            for comparable in comparables:
                item = merged.get(comparable.item_id)
                if item is None:
                    item = ScoredComparable(**comparable.model_dump())
                    if _condition_matches(condition, comparable.condition):
                        item.condition_match = True
                        item.score += CONDITION_MATCH_BONUS
                    merged[comparable.item_id] = item
                if tier.name in item.matched_tiers:
                    continue
                item.score += tier.priority
                item.matched_tiers.append(tier.name)
        return sorted(merged.values(), key=lambda c: (-c.score, c.item_id))

    def _suggest(
        self,
        analysis: QueryAnalysis,
        tiers: List[SearchTier],
        merged: List[ScoredComparable],
    ) -> SuggestedPrice:
        currencies = Counter(c.currency for c in merged if c.currency and c.price)
        currency = currencies.most_common(1)[0][0] if currencies else None
        priced = [c for c in merged if currency is None or c.currency in (None, currency)]

        suggestion = aggregate_prices([c.price for c in priced])
        return suggestion.model_copy(
            update={
                "currency": currency,
                "dominant_category_id": self.dominant_category(merged),
                "strategies": tiers,
                "analysis": analysis,
                "comparables": merged[:MAX_RETURNED_COMPARABLES],
            }
        )

    @staticmethod
    def dominant_category(comparables: List[ScoredComparable]) -> Optional[str]:
        """Most frequent category id; ties go to the higher total score, then the smaller id."""
        counts: Dict[str, int] = defaultdict(int)
        scores: Dict[str, float] = defaultdict(float)
        for c in comparables:
            if c.category_id:
                counts[c.category_id] += 1
                scores[c.category_id] += c.score
        if not counts:
            return None
        return min(counts, key=lambda cat: (-counts[cat], -scores[cat], cat))
