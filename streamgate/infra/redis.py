from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError
from rich.console import Console

from streamgate.config.settings import RedisConfig

console = Console(stderr=True)


async def init_redis(redis_config: RedisConfig) -> Optional[aioredis.Redis]:
    """Connect to Redis; the gateway runs without it when unavailable"""
    if not redis_config.enabled:
        return None

    try:
        redis_client = aioredis.from_url(
            redis_config.url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=redis_config.socket_timeout
        )
        await redis_client.ping()
        console.print("[green]✓ Redis connected[/green]")
        return redis_client
    except (RedisError, OSError) as e:
        console.print(f"[yellow]⚠ Redis connection failed: {str(e)}[/yellow]")
        return None


async def close_redis(redis_client: Optional[aioredis.Redis]) -> None:
    """Close Redis connection"""
    if redis_client:
        await redis_client.aclose()
        console.print("[dim]✓ Redis connection closed[/dim]")
