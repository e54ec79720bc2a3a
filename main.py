"""
Cache info entry point.
Builds the resilient access layer from the environment and prints its
cache, deduplication and circuit breaker status as JSON.
"""

import asyncio
import json

from loguru import logger

from notion_access.services.client import create_client
from notion_access.settings import load_settings


async def main() -> None:
    """Print cache info on stdout."""
    settings = load_settings()
    client = await create_client(settings)

    try:
        info = await client.get_cache_info()
        print(json.dumps(info, indent=2, default=str))
    except Exception as e:
        logger.error(f"Failed to collect cache info: {e}")
        raise
    finally:
        await client.close()


if __name__ == "__main__":
    asyncio.run(main())
