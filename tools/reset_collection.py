from __future__ import annotations

"""CLI utility to drop and recreate the configured vector collection."""

import argparse
import asyncio

from src.app.dependencies import get_vector_index
from src.app.settings import settings


async def _reset() -> dict:
    index = get_vector_index()
    await index.clear()
    return await index.stats()


def main() -> None:
    """Clear the vector collection named in the app settings."""
    parser = argparse.ArgumentParser(description="Drop and recreate the vector collection.")
    parser.add_argument(
        "--yes",
        action="store_true",
        help="Skip the confirmation prompt.",
    )
    args = parser.parse_args()

    target = f"{settings.vectorstore_backend}:{settings.milvus_collection}"
    if not args.yes:
        answer = input(f"Delete every stored chunk in {target}? [y/N] ")
        if answer.strip().lower() not in {"y", "yes"}:
            raise SystemExit("Aborted")

    stats = asyncio.run(_reset())
    print(f"Recreated collection: {target} ({stats['document_count']} records)")


if __name__ == "__main__":
    main()
