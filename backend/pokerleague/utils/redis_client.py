"""Redis client for per-round write locks."""

from redis.asyncio import ConnectionPool, Redis

from pokerleague.config import Settings, get_settings

# Global Redis connection pool and client instance
redis_pool: ConnectionPool | None = None
redis_client: Redis | None = None


async def init_redis(settings: Settings | None = None) -> Redis:
    """Initialize Redis connection from settings.redis_url."""
    global redis_pool, redis_client

    settings = settings or get_settings()
    if not settings.redis_url:
        raise RuntimeError("redis_url is not configured")

    redis_pool = ConnectionPool.from_url(
        settings.redis_url,
        socket_timeout=settings.redis_socket_timeout,
        socket_connect_timeout=settings.redis_socket_timeout,
        retry_on_timeout=True,
        encoding="utf-8",
        decode_responses=True,
    )
    redis_client = Redis(connection_pool=redis_pool)

    # Test connection
    await redis_client.ping()
    return redis_client


async def close_redis() -> None:
    """Close Redis connection and pool."""
    global redis_pool, redis_client
    if redis_client:
        await redis_client.aclose()
        redis_client = None
    if redis_pool:
        await redis_pool.disconnect()
        redis_pool = None
