"""Line-item extraction and revenue allocation for free-text sale records.

Staff describe a sale in a single loosely structured string such as
``"2x Pop UP + 1x Burn UP | Essen"``. This module turns that text into
:class:`LineItem` pairs and splits the transaction amount across them in
proportion to quantity.

The matching strategy sits behind the :class:`LineItemParser` protocol so an
alternative tokenizer can replace :class:`PatternLineItemParser` without
touching allocation or aggregation code.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal
from typing import FrozenSet, List, Protocol, Sequence

from . import log
from .constants import CATEGORY_STOP_WORDS


@dataclass(frozen=True)
class LineItem:
    """One ``{product, quantity}`` pair parsed from a description."""

    product_name: str
    quantity: int


@dataclass(frozen=True)
class Allocation:
    """Share of a transaction amount attributed to a single line item."""

    item: LineItem
    revenue: Decimal


class LineItemParser(Protocol):
    """Anything that can turn a raw description into line items."""

    def parse(self, description: str) -> List[LineItem]:
        ...


# ``<integer> x <fragment>`` where the fragment stops at ``+``, ``|`` or the end.
_ITEM_PATTERN = re.compile(r"(\d+)\s*[xX]\s*([^+|]*)")
_DATE_TOKEN = re.compile(r"^\d{1,2}\.\d{1,2}\.$")
_PERSON_COUNT_TOKEN = re.compile(r"^\d+P$", re.IGNORECASE)


class PatternLineItemParser:
    """Regex scanner that extracts ``<qty> x <name>`` occurrences.

    Fragments that look like dates (``30.10.``), person counts (``2P``),
    category words, or single characters are discarded. Repeated product
    names are emitted once per occurrence; callers sum over the sequence.
    """

    def __init__(self, stop_words: FrozenSet[str] = CATEGORY_STOP_WORDS) -> None:
        self._stop_words = frozenset(word.casefold() for word in stop_words)

    def parse(self, description: str) -> List[LineItem]:
        if not description:
            return []

        items: List[LineItem] = []
        for match in _ITEM_PATTERN.finditer(description):
            quantity = int(match.group(1))
            fragment = match.group(2).strip()
            if quantity <= 0 or self.is_rejected(fragment):
                log.debug("Rejected line item candidate %r (quantity=%s)", fragment, quantity)
                continue
            items.append(LineItem(product_name=fragment, quantity=quantity))
        return items

    def is_rejected(self, fragment: str) -> bool:
        """Return ``True`` when ``fragment`` is not a product name."""

        if len(fragment) <= 1:
            return True
        if _DATE_TOKEN.match(fragment) or _PERSON_COUNT_TOKEN.match(fragment):
            return True
        return fragment.casefold() in self._stop_words


DEFAULT_PARSER: LineItemParser = PatternLineItemParser()


def parse_line_items(description: str, parser: LineItemParser = DEFAULT_PARSER) -> List[LineItem]:
    """Parse ``description`` and log a soft fallback when nothing matches."""

    items = parser.parse(description)
    if not items:
        log.info("No line items recognised in %r; amount stays unattributed", description)
    return items


def allocate_revenue(amount: Decimal, items: Sequence[LineItem]) -> List[Allocation]:
    """Split ``amount`` across ``items`` proportionally to quantity.

    Each item receives ``amount * quantity / total_quantity``. The last item
    takes whatever remains after the others so the allocations always add up
    to ``amount`` exactly. No rounding is applied here; presentation code
    quantizes. An empty ``items`` sequence yields no allocations.

    Args:
        amount (Decimal): Total transaction amount, already validated as
            non-negative.
        items (Sequence[LineItem]): Parsed line items in description order.

    Returns:
        list[Allocation]: One allocation per line item, in the same order.
    """

    total_quantity = sum(item.quantity for item in items)
    if total_quantity <= 0:
        return []

    allocations: List[Allocation] = []
    assigned = Decimal("0")
    last_index = len(items) - 1
    for index, item in enumerate(items):
        if index == last_index:
            share = amount - assigned
        else:
            share = amount * Decimal(item.quantity) / Decimal(total_quantity)
            assigned += share
        allocations.append(Allocation(item=item, revenue=share))
    return allocations
