#!/usr/bin/env python3
"""
Quick manual check of the catalog scraper
Usage: python scripts/try_search.py ITEM_NAME [--model M] [--background B] [--pattern P]
Example: python scripts/try_search.py "Plush Pepe" --model "Cozy Galaxy"
"""

import sys
import asyncio
import logging
import argparse
from pathlib import Path

# Setup path
sys.path.append(str(Path(__file__).parent.parent))

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

from config.settings import ScraperConfig
from monitoring.catalog_scraper import CatalogScraper
from monitoring.errors import ExtractionError
from monitoring.schemas import SearchCriteria
from utils.number_parser import format_count


async def run(criteria, headless, with_link):
    config = ScraperConfig.from_env()
    config.headless = headless
    scraper = CatalogScraper(config)

    try:
        result = await scraper.search(criteria)

        print(f"\n{'='*60}")
        print(f"Found: {format_count(result.count)}")
        for item in result.items:
            print(f"  - {item.id}: {item.name}{f' [{item.rarity}]' if item.rarity else ''}")

        if with_link:
            link = await scraper.latest_item_link(criteria)
            print(f"Latest item: {link or 'not found'}")

        stats = scraper.get_stats()
        print(f"Requests: {stats.total_requests}, avg {stats.average_response_time_ms:.0f} ms")
        print(f"{'='*60}\n")
        return 0
    except ExtractionError as e:
        print(f"\n❌ Search failed: {e}")
        return 1
    finally:
        await scraper.close()


def main():
    parser = argparse.ArgumentParser(description="Run a single catalog search")
    parser.add_argument("item_name")
    parser.add_argument("--model")
    parser.add_argument("--background")
    parser.add_argument("--pattern")
    parser.add_argument("--show", action="store_true", help="Show the browser window")
    parser.add_argument("--link", action="store_true", help="Also fetch the newest item's deep link")
    args = parser.parse_args()

    criteria = SearchCriteria(
        item_name=args.item_name,
        model=args.model,
        background=args.background,
        pattern=args.pattern,
    )

    print(f"\n{'='*60}")
    print(f"Searching: {criteria.describe()}")
    print(f"{'='*60}\n")

    sys.exit(asyncio.run(run(criteria, headless=not args.show, with_link=args.link)))


if __name__ == "__main__":
    main()
