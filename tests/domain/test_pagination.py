"""Tests for the pagination aggregator."""

from __future__ import annotations

import asyncio

import pytest

from cloudstore.common.errors import StorageError, TransportError
from cloudstore.domain.pagination import (
    aggregate_containers,
    aggregate_listing,
    walk_pages,
)
from cloudstore.infra.storage.client import (
    BackendProfile,
    ContainerPage,
    ListKind,
    ListPage,
    ObjectEntry,
    PrefixEntry,
)


def _profile(split_listing: bool) -> BackendProfile:
    return BackendProfile(
        provider="scripted",
        single_object_max_bytes=1024,
        min_chunk_bytes=1,
        native_headers={},
        split_listing=split_listing,
    )


class ScriptedListingClient:
    """Serves pre-built pages keyed by (kind, cursor)."""

    def __init__(self, pages, *, split_listing=False, container_pages=None):
        self.profile = _profile(split_listing)
        self.pages = pages
        self.container_pages = container_pages or {}
        self.requests = []

    async def list_page(self, *, container, prefix, cursor, kind, page_size):
        self.requests.append((kind, cursor, page_size))
        await asyncio.sleep(0)
        page = self.pages[(kind, cursor)]
        if isinstance(page, Exception):
            raise page
        return page

    async def list_containers_page(self, *, cursor):
        return self.container_pages[cursor]


@pytest.mark.asyncio
async def test_walk_pages_threads_cursors():
    seen = []
    pages = {
        None: ContainerPage(names=("a",), cursor="t1"),
        "t1": ContainerPage(names=("b",), cursor="t2"),
        "t2": ContainerPage(names=("c",)),
    }

    async def fetch(cursor):
        seen.append(cursor)
        return pages[cursor]

    result = await walk_pages(fetch)

    assert seen == [None, "t1", "t2"]
    assert [page.names for page in result] == [("a",), ("b",), ("c",)]


@pytest.mark.asyncio
async def test_walk_pages_rejects_repeated_cursor():
    async def fetch(cursor):
        return ContainerPage(names=("a",), cursor="same")

    with pytest.raises(StorageError, match="repeated continuation cursor"):
        await walk_pages(fetch)


@pytest.mark.asyncio
async def test_single_walk_preserves_backend_order():
    client = ScriptedListingClient(
        {
            (ListKind.ALL, None): ListPage(
                entries=(ObjectEntry(path="b.txt", size=1), PrefixEntry(prefix="a/")),
                cursor="next",
            ),
            (ListKind.ALL, "next"): ListPage(entries=(ObjectEntry(path="c.txt", size=2),)),
        }
    )

    entries = await aggregate_listing(client, container="c1", prefix="", page_size=2)

    assert entries == [
        ObjectEntry(path="b.txt", size=1),
        PrefixEntry(prefix="a/"),
        ObjectEntry(path="c.txt", size=2),
    ]
    assert client.requests == [(ListKind.ALL, None, 2), (ListKind.ALL, "next", 2)]


@pytest.mark.asyncio
async def test_split_walks_put_objects_before_prefixes():
    client = ScriptedListingClient(
        {
            (ListKind.OBJECTS, None): ListPage(
                entries=(ObjectEntry(path="x/1", size=1),), cursor="o1"
            ),
            (ListKind.OBJECTS, "o1"): ListPage(entries=(ObjectEntry(path="x/2", size=1),)),
            (ListKind.PREFIXES, None): ListPage(
                entries=(PrefixEntry(prefix="x/a/"),), cursor="p1"
            ),
            (ListKind.PREFIXES, "p1"): ListPage(entries=(PrefixEntry(prefix="x/b/"),)),
        },
        split_listing=True,
    )

    entries = await aggregate_listing(client, container="c1", prefix="x/", page_size=1)

    assert entries == [
        ObjectEntry(path="x/1", size=1),
        ObjectEntry(path="x/2", size=1),
        PrefixEntry(prefix="x/a/"),
        PrefixEntry(prefix="x/b/"),
    ]
    kinds = {kind for kind, _, _ in client.requests}
    assert kinds == {ListKind.OBJECTS, ListKind.PREFIXES}


@pytest.mark.asyncio
async def test_failed_walk_cancels_the_other():
    cancelled = asyncio.Event()
    blocker = asyncio.Event()

    class StuckClient(ScriptedListingClient):
        async def list_page(self, *, container, prefix, cursor, kind, page_size):
            if kind is ListKind.PREFIXES:
                raise TransportError("connection reset")
            try:
                await blocker.wait()
            except asyncio.CancelledError:
                cancelled.set()
                raise

    client = StuckClient({}, split_listing=True)

    with pytest.raises(TransportError, match="connection reset"):
        await aggregate_listing(client, container="c1", prefix="", page_size=10)

    await asyncio.wait_for(cancelled.wait(), timeout=1)
    assert cancelled.is_set()


@pytest.mark.asyncio
async def test_error_on_later_page_discards_partial_result():
    client = ScriptedListingClient(
        {
            (ListKind.ALL, None): ListPage(
                entries=(ObjectEntry(path="a", size=1),), cursor="t1"
            ),
            (ListKind.ALL, "t1"): TransportError("page lost"),
        }
    )

    with pytest.raises(TransportError, match="page lost"):
        await aggregate_listing(client, container="c1", prefix="", page_size=1)


@pytest.mark.asyncio
async def test_aggregate_containers():
    client = ScriptedListingClient(
        {},
        container_pages={
            None: ContainerPage(names=("alpha", "beta"), cursor="2"),
            "2": ContainerPage(names=("gamma",)),
        },
    )

    assert await aggregate_containers(client) == ["alpha", "beta", "gamma"]
