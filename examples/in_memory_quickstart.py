#!/usr/bin/env python3
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from laakhay.cache import (
    FetchByQueryResult,
    PaginatedSearchableRepository,
    RepositoryConfig,
    Segment,
)


@dataclass
class Article:
    slug: str
    title: str


ARTICLES = [Article(slug=f"article-{i}", title=f"Article #{i}") for i in range(23)]


class ArticleRepository(PaginatedSearchableRepository[dict, Article, str]):
    def extract_id(self, entity: Article) -> str:
        return entity.slug

    async def fetch_by_id(self, id_: str) -> Article | None:
        await asyncio.sleep(0.05)
        return next((a for a in ARTICLES if a.slug == id_), None)

    async def fetch_by_query(self, query: dict, segment: Segment) -> FetchByQueryResult:
        await asyncio.sleep(0.05)
        print(f"  fetch {query} [{segment.offset}, {segment.end})")
        matches = [a for a in ARTICLES if query.get("contains", "") in a.title]
        return FetchByQueryResult(entities=matches[segment.offset : segment.end])


async def main() -> None:
    logging.basicConfig(level=logging.DEBUG)
    repository = ArticleRepository(config=RepositoryConfig(default_count=5))
    query = {"contains": "Article"}

    print("First page:")
    print([a.slug for a in await repository.by_query_async(query)])

    print("Two windows at once, the overlap is fetched once:")
    first, second = await asyncio.gather(
        repository.by_query_async(query, Segment(offset=10, count=5)),
        repository.by_query_async(query, Segment(offset=3, count=10)),
    )
    print([a.slug for a in first], [a.slug for a in second])

    print("Past the end:")
    tail = await repository.by_query_async(query, Segment(offset=20, count=10))
    print([a.slug for a in tail], "limit:", repository.limit_of(query))

    print("Edit a copy, the cached entity is unchanged:")
    draft = await repository.mutable_copy_by_id_async("draft", "article-3")
    if draft is not None:
        draft.title = "Edited"
    print(repository.by_id("article-3"), draft)

    print("Evicting drops the query:")
    repository.evict("article-3")
    print(repository.loaded_segments(query))
    await repository.wait_for_idle()


if __name__ == "__main__":
    asyncio.run(main())
