"""
Catalog Page Parser

Reads the found-count, item summaries and item deep links out of the
rendered page source with BeautifulSoup, so the browser only has to drive
the page and hand over its HTML.
"""

import re
import logging
from datetime import datetime
from urllib.parse import urlparse

from bs4 import BeautifulSoup

from monitoring.page_selectors import (
    COUNT_SELECTOR,
    COUNT_FALLBACK_SELECTORS,
    ITEM_CARD_SELECTORS,
    ITEM_IMAGE_SELECTORS,
    ITEM_NAME_SELECTOR,
    ITEM_RARITY_SELECTOR,
    ITEM_LINK_SELECTOR,
)
from monitoring.schemas import CatalogItem, SearchResult
from utils.number_parser import parse_count_text, parse_found_text

logger = logging.getLogger(__name__)

MAX_ITEMS = 10
# Counting rendered cards is only trusted below this many matches
MAX_CARD_COUNT = 100

_DETAIL_PATH_RE = re.compile(r"/gifts/([^/?#]+)")


def _as_soup(html_or_soup):
    if isinstance(html_or_soup, BeautifulSoup):
        return html_or_soup
    return BeautifulSoup(html_or_soup or "", "html.parser")


def parse_count(html_or_soup):
    """
    Determine the number of matching items on a results page.

    Tries, in order: the authoritative count element, a "Found: N" phrase,
    generic count elements, then the number of rendered item images.

    Returns:
        int: Found count, 0 if nothing matches
    """
    soup = _as_soup(html_or_soup)

    element = soup.select_one(COUNT_SELECTOR)
    if element:
        count = parse_count_text(element.get_text(" ", strip=True))
        if count is not None:
            logger.debug(f"Count {count} from {COUNT_SELECTOR}")
            return count

    count = parse_found_text(soup.get_text(" ", strip=True))
    if count is not None:
        logger.debug(f"Count {count} from 'Found: N' text")
        return count

    for selector in COUNT_FALLBACK_SELECTORS:
        element = soup.select_one(selector)
        if element:
            count = parse_count_text(element.get_text(" ", strip=True))
            if count is not None:
                logger.debug(f"Count {count} from {selector}")
                return count

    for selector in ITEM_IMAGE_SELECTORS:
        cards = soup.select(selector)
        if 0 < len(cards) < MAX_CARD_COUNT:
            logger.debug(f"Count {len(cards)} from rendered cards ({selector})")
            return len(cards)

    logger.warning("Could not determine the found count, assuming 0")
    return 0


def _parse_item(card, index):
    item_id = card.get("data-id") or card.get("id") or f"item-{index}"

    name_element = card.select_one(ITEM_NAME_SELECTOR)
    name = name_element.get_text(" ", strip=True) if name_element else ""

    image = card.find("img")
    image_url = image.get("src") if image else None

    rarity_element = card.select_one(ITEM_RARITY_SELECTOR)
    rarity = rarity_element.get_text(" ", strip=True) if rarity_element else None

    return CatalogItem(
        id=str(item_id).strip(),
        name=name or "Unknown Gift",
        image_url=image_url or None,
        rarity=rarity or None,
    )


def parse_items(html_or_soup, limit=MAX_ITEMS):
    """
    Extract up to `limit` item summaries from the first matching cards.

    A card that cannot be parsed is skipped.
    """
    soup = _as_soup(html_or_soup)

    cards = []
    for selector in ITEM_CARD_SELECTORS:
        cards = soup.select(selector)
        if cards:
            break

    items = []
    for index, card in enumerate(cards[:limit]):
        try:
            items.append(_parse_item(card, index))
        except Exception as e:
            logger.debug(f"Skipping item card {index}: {e}")
    return items


def parse_search_results(html, criteria, timestamp=None):
    """
    Build a SearchResult from a rendered results page.
    """
    soup = _as_soup(html)
    count = parse_count(soup)
    items = parse_items(soup)
    logger.info(f"Parsed {count} found, {len(items)} item summaries for {criteria.describe()}")
    return SearchResult(
        count=count,
        items=items,
        criteria=criteria,
        timestamp=timestamp or datetime.now(),
    )


def derive_item_link(html, current_url, link_base="https://t.me/nft/"):
    """
    Find the deep link of an item detail view.

    Prefers an explicit deep-link anchor; falls back to the item id in the
    detail page URL (".../gifts/<id>").

    Returns:
        str or None: Deep link URL
    """
    soup = _as_soup(html)
    anchor = soup.select_one(ITEM_LINK_SELECTOR)
    if anchor and anchor.get("href"):
        return anchor["href"]

    path = urlparse(current_url or "").path
    match = _DETAIL_PATH_RE.search(path)
    if match:
        return f"{link_base.rstrip('/')}/{match.group(1)}"

    return None
