from __future__ import annotations

"""CLI utility to collect news articles and ingest them."""

import argparse
import asyncio
import json
import logging
from pathlib import Path
from typing import Sequence

from src.app.dependencies import get_feed_config, get_ingestion_pipeline, get_vector_index
from src.app.settings import settings
from src.loaders.rss import collect_articles
from src.rag.ingestion import IngestionReport
from src.rag.types import Article


def _load_json_articles(path: Path) -> list[Article]:
    """Read articles from a JSON file holding a list of article objects."""
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("articles", [])
    articles: list[Article] = []
    for item in data:
        articles.append(
            Article(
                id=item.get("id"),
                title=item.get("title", ""),
                content=item.get("content", ""),
                source=item.get("source", "unknown"),
                link=item.get("link"),
                pub_date=item.get("pub_date") or item.get("pubDate"),
                metadata=item.get("metadata") or {},
            )
        )
    return articles


async def _run(feeds: Sequence[str], json_path: Path | None, dry_run: bool) -> IngestionReport | None:
    articles: list[Article] = []
    if json_path is not None:
        articles.extend(_load_json_articles(json_path))
    if feeds:
        articles.extend(await collect_articles(feeds, get_feed_config()))
    print(f"Collected {len(articles)} articles")
    if dry_run:
        for article in articles:
            print(f"- {article.title} ({article.source})")
        return None
    await get_vector_index().ensure_collection()
    return await get_ingestion_pipeline().run(articles)


def main() -> None:
    """Collect articles from RSS feeds and/or a JSON file, then ingest them."""
    parser = argparse.ArgumentParser(description="Collect and ingest news articles.")
    parser.add_argument(
        "feeds",
        nargs="*",
        help="RSS or Atom feed URLs. Defaults to RAG_RSS_FEEDS.",
    )
    parser.add_argument("--json", type=Path, default=None, help="JSON file with articles.")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List collected articles without ingesting them.",
    )
    args = parser.parse_args()

    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
    feeds = args.feeds or settings.rss_feeds
    if not feeds and args.json is None:
        raise SystemExit("No feeds given and RAG_RSS_FEEDS is empty")

    report = asyncio.run(_run(feeds, args.json, args.dry_run))
    if report is None:
        return
    print(report.message)
    if not report.success:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
