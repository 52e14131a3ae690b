#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import logging
from typing import Any

import aiohttp
from pydantic import BaseModel

from laakhay.cache import FetchByQueryResult, FetchError, PaginatedSearchableRepository, Segment


class Post(BaseModel):
    id: int
    userId: int
    title: str
    body: str


class PostRepository(PaginatedSearchableRepository[dict, Post, int]):
    """Posts of https://jsonplaceholder.typicode.com, paged with _start/_limit."""

    def __init__(self, session: aiohttp.ClientSession, base_url: str, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._session = session
        self._base_url = base_url

    def extract_id(self, entity: Post) -> int:
        return entity.id

    async def fetch_by_id(self, id_: int) -> Post | None:
        async with self._session.get(f"{self._base_url}/posts/{id_}") as response:
            if response.status == 404:
                return None
            response.raise_for_status()
            return Post(**await response.json())

    async def fetch_by_query(self, query: dict, segment: Segment) -> FetchByQueryResult:
        params = {**query, "_start": segment.offset, "_limit": segment.count}
        async with self._session.get(f"{self._base_url}/posts", params=params) as response:
            response.raise_for_status()
            return FetchByQueryResult(entities=[Post(**row) for row in await response.json()])


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Page through posts with an incrementally loading cache")
    p.add_argument("user_id", nargs="?", type=int, default=1)
    p.add_argument("--base-url", default="https://jsonplaceholder.typicode.com")
    p.add_argument("--page-size", type=int, default=4)
    return p.parse_args()


async def main() -> None:
    args = parse_args()
    logging.basicConfig(level=logging.INFO)
    query = {"userId": args.user_id}

    timeout = aiohttp.ClientTimeout(total=30)
    async with aiohttp.ClientSession(timeout=timeout) as session:
        repository = PostRepository(session, args.base_url)
        repository.add_error_listener(lambda error: print(f"ERROR {error!r}"))

        # Walk pages until the repository learns where the query ends
        offset = 0
        while True:
            window = Segment(offset=offset, count=args.page_size)
            try:
                posts = await repository.by_query_async(query, window)
            except FetchError as e:
                print(f"Page at {offset} failed: {e}")
                return
            for post in posts:
                print(f"{post.id:>4} | {post.title[:60]}")
            if repository.was_out_of_bounds(query, window):
                break
            offset += args.page_size

        print("Loaded segments:", repository.loaded_segments(query))
        print("Limit:", repository.limit_of(query))

        # Served from the cache, no request
        first = await repository.by_id_async(posts[0].id) if posts else None
        print("Cached:", first.title if first else None)

        # A window spanning two cached pages needs no fetch either
        span = await repository.by_query_async(query, Segment(offset=2, count=args.page_size))
        print("Span:", [post.id for post in span])


if __name__ == "__main__":
    asyncio.run(main())
