# src/bucketsync/inventory.py
"""Builds complete `name -> size` inventories of object stores."""

import asyncio
import logging
from typing import Dict, Optional, Tuple

from bucketsync.exceptions import ListingError
from bucketsync.store import ListPage, ObjectStore

logger: logging.Logger = logging.getLogger(__name__)

Inventory = Dict[str, int]


async def list_inventory(store: ObjectStore) -> Inventory:
    """
    Pages through a store's listing until no continuation token remains.

    A name listed twice keeps the size from its last appearance.

    Args:
        store (ObjectStore): The store to enumerate.

    Returns:
        Inventory: Every object name mapped to its size in bytes.

    Raises:
        ListingError: If any page fails. No partial inventory is returned.
    """
    inventory: Inventory = {}
    token: Optional[str] = None
    pages: int = 0
    while True:
        try:
            page: ListPage = await store.list_page(token)
        except Exception as e:
            logger.error(f"Listing '{store.name}' failed after {pages} pages: {e}")
            raise ListingError(store.name, e) from e
        pages += 1
        for name, size in page.entries:
            inventory[name] = size
        token = page.next_token
        if not token:
            break
    logger.debug(f"Listed {len(inventory)} objects in {pages} pages from '{store.name}'.")
    return inventory


async def list_inventories(
    source: ObjectStore, destination: ObjectStore
) -> Tuple[Inventory, Inventory]:
    """
    Lists both stores concurrently.

    Args:
        source (ObjectStore): The source store.
        destination (ObjectStore): The destination store.

    Returns:
        Tuple[Inventory, Inventory]: The source and destination inventories.
    """
    source_inventory, dest_inventory = await asyncio.gather(
        list_inventory(source), list_inventory(destination)
    )
    return source_inventory, dest_inventory
