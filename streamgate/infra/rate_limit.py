from fastapi import HTTPException, Request
from redis.exceptions import RedisError
import functools

from streamgate.utils.locale import get_locale


class RedisRateLimiter:
    """Redis-based per-client rate limiter with Lua script"""

    lua_script = """
    local key = KEYS[1]
    local limit = tonumber(ARGV[1])
    local window = tonumber(ARGV[2])

    local current = redis.call('INCR', key)
    if current == 1 then
        redis.call('EXPIRE', key, window)
    end

    if current > limit then
        local ttl = redis.call('TTL', key)
        return {0, ttl}
    end

    return {1, 0}
    """

    async def __call__(self, request: Request):
        config = request.app.state.config
        if not config.rate_limit.enabled:
            return True

        redis = request.app.state.runtime.redis
        if not redis:
            return True

        client_ip = request.client.host if request.client else "unknown"
        key = f"rate:{client_ip}:{request.url.path}"

        try:
            allowed, ttl = await redis.eval(
                self.lua_script,
                1,
                key,
                config.rate_limit.max_requests,
                config.rate_limit.window_seconds
            )
        except RedisError:
            # Redis trouble must not take the gateway down
            return True

        if not allowed:
            locale = get_locale(request.headers.get("accept-language"), config.i18n)
            _ = functools.partial(request.app.state.i18n.get, locale=locale)
            raise HTTPException(
                status_code=429,
                detail=_("error.rate_limit", seconds=ttl),
                headers={"Retry-After": str(ttl)}
            )

        return True


rate_limiter = RedisRateLimiter()
