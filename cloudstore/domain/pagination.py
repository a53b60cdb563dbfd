"""Pagination aggregator for cursor-paged list APIs.

A listing either returns every entry for the query or raises; callers never
see a partial result. Entries keep the order the backend returned them in.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Protocol, TypeVar

from cloudstore.common.errors import StorageError
from cloudstore.infra.storage.client import (
    BackendProfile,
    ContainerPage,
    ListEntry,
    ListKind,
    ListPage,
)

logger = logging.getLogger("cloudstore.listing")

PageT = TypeVar("PageT", ListPage, ContainerPage)


class ListingClient(Protocol):
    profile: BackendProfile

    async def list_page(
        self,
        *,
        container: str,
        prefix: str,
        cursor: str | None,
        kind: ListKind,
        page_size: int,
    ) -> ListPage:
        ...

    async def list_containers_page(self, *, cursor: str | None) -> ContainerPage:
        ...


async def walk_pages(fetch: Callable[[str | None], Awaitable[PageT]]) -> list[PageT]:
    """Fetch pages, threading each cursor into the next request, until exhausted.

    Raises:
        StorageError: If the backend hands back the cursor it was just given.
    """
    pages: list[PageT] = []
    cursor: str | None = None
    while True:
        page = await fetch(cursor)
        pages.append(page)
        if not page.has_more:
            return pages
        if page.cursor == cursor:
            raise StorageError(
                "Backend returned a repeated continuation cursor while listing"
            )
        cursor = page.cursor


async def _walk_entries(
    client: ListingClient,
    *,
    container: str,
    prefix: str,
    kind: ListKind,
    page_size: int,
) -> list[ListEntry]:
    async def fetch(cursor: str | None) -> ListPage:
        return await client.list_page(
            container=container,
            prefix=prefix,
            cursor=cursor,
            kind=kind,
            page_size=page_size,
        )

    pages = await walk_pages(fetch)
    entries: list[ListEntry] = []
    for page in pages:
        entries.extend(page.entries)
    logger.debug(
        "listing_walk_done container=%s prefix=%s kind=%s pages=%d entries=%d",
        container,
        prefix,
        kind.value,
        len(pages),
        len(entries),
    )
    return entries


async def aggregate_listing(
    client: ListingClient,
    *,
    container: str,
    prefix: str,
    page_size: int,
) -> list[ListEntry]:
    """Drive a backend's paged list API to completion for one prefix.

    Backends that split objects and prefixes into independent queries get
    both walks run concurrently; objects come first in the merged result.
    If either walk fails the other is cancelled and the error propagates.
    """
    if not client.profile.split_listing:
        return await _walk_entries(
            client,
            container=container,
            prefix=prefix,
            kind=ListKind.ALL,
            page_size=page_size,
        )

    tasks = [
        asyncio.ensure_future(
            _walk_entries(
                client,
                container=container,
                prefix=prefix,
                kind=kind,
                page_size=page_size,
            )
        )
        for kind in (ListKind.OBJECTS, ListKind.PREFIXES)
    ]
    try:
        objects, prefixes = await asyncio.gather(*tasks)
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
    return [*objects, *prefixes]


async def aggregate_containers(client: ListingClient) -> list[str]:
    """Collect every container name across all pages."""

    async def fetch(cursor: str | None) -> ContainerPage:
        return await client.list_containers_page(cursor=cursor)

    names: list[str] = []
    for page in await walk_pages(fetch):
        names.extend(page.names)
    return names
