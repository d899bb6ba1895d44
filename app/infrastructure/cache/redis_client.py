from redis import Redis

from app.core.config import settings


def get_redis_client(url: str | None = None) -> Redis:
    return Redis.from_url(url or settings.cache_redis_url, decode_responses=True)
