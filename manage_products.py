#!/usr/bin/env python
import os
import sys
import asyncio
import argparse
import logging

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger('manage_products')

# Add the project directory to the path
sys.path.insert(0, os.path.abspath(os.path.dirname(__file__)))

from fashion_compare.models.database import SQLKeyValueStorage
from fashion_compare.models.store import ProductStore
from fashion_compare.services.similarity import SimilarityEngine, StoreCandidateSource
from fashion_compare.tasks.tasks import capture_product, find_similar_for_url


async def add_product(store: ProductStore, url: str, force: bool = False) -> bool:
    """
    Capture a product page and store its record

    Args:
        store: Store receiving the record
        url: Product URL to capture
        force: Skip the product-page check

    Returns:
        True if successful, False otherwise
    """
    if not url.startswith(("http://", "https://")):
        logger.error("Invalid URL. Make sure it starts with http:// or https://")
        return False

    product = await capture_product(url, store, check_page=not force)
    if product is None:
        return False

    logger.info(f"Added product: {product.title} - Current price: {product.price}")
    return True


async def list_products(store: ProductStore):
    """List all stored products"""
    products = await store.get_all()

    if not products:
        logger.info("No products are stored.")
        return

    logger.info(f"Storing {len(products)} products:")
    for url, product in products.items():
        brand = f"[{product.brand}] " if product.brand else ""
        logger.info(f" - {brand}{product.title} ({url}): {product.price:.2f}")


async def show_similar(store: ProductStore, url: str, use_placeholder: bool = False):
    source = None if use_placeholder else StoreCandidateSource(store)
    engine = SimilarityEngine(candidate_source=source)

    matches = await find_similar_for_url(url, store, engine)
    if not matches:
        logger.info("No similar products found.")
        return

    for match in matches:
        logger.info(f" - {match.title} ({match.domain}): {match.price}")


async def clear_products(store: ProductStore) -> bool:
    result = await store.clear()
    if result:
        logger.info("Removed all stored products")
    else:
        logger.error("Could not clear stored products")
    return result


def main(argv=None):
    parser = argparse.ArgumentParser(description="Capture and compare product pages")
    parser.add_argument("--database-url", help="Storage database URL (defaults to DATABASE_URL)")

    # Create subparsers for different commands
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    add_parser = subparsers.add_parser("add", help="Capture a product page")
    add_parser.add_argument("url", help="URL of the product page")
    add_parser.add_argument("--force", action="store_true", help="Extract even if the page does not look like a product page")

    subparsers.add_parser("list", help="List all stored products")

    similar_parser = subparsers.add_parser("similar", help="Show products similar to a stored one")
    similar_parser.add_argument("url", help="URL of a stored product")
    similar_parser.add_argument("--placeholder", action="store_true", help="Compare against the placeholder feed")

    subparsers.add_parser("clear", help="Remove every stored product")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    storage = SQLKeyValueStorage(args.database_url)
    store = ProductStore(storage)
    try:
        if args.command == "add":
            ok = asyncio.run(add_product(store, args.url, force=args.force))
        elif args.command == "list":
            ok = asyncio.run(list_products(store)) is None
        elif args.command == "similar":
            ok = asyncio.run(show_similar(store, args.url, use_placeholder=args.placeholder)) is None
        else:
            ok = asyncio.run(clear_products(store))
    finally:
        storage.close()

    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
