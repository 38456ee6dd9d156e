import asyncio
import ipaddress
import socket
from enum import Enum, auto
from typing import Optional
from urllib.parse import urlparse

from redis.asyncio import Redis
from redis.exceptions import RedisError

from streamgate.config.settings import SecurityConfig
from streamgate.utils.hash import hash_stable

SSRF_CACHE_TTL = 300


class UrlValidationResult(Enum):
    """URL validation result without throwing exceptions"""
    OK = auto()
    BLOCKED = auto()
    INVALID = auto()


class SecurityValidator:
    """
    Validate source URL hosts without throwing exceptions.
    Returns result enum for separation of concerns.
    """

    @staticmethod
    def is_blocked_ip(ip_str: str, security: SecurityConfig) -> bool:
        ip = ipaddress.ip_address(ip_str)

        if ip.is_loopback:
            return not security.allow_localhost
        if ip.is_private:
            return not security.allow_private_ips
        return ip.is_link_local or ip.is_multicast or ip.is_unspecified

    @staticmethod
    async def validate_url(
        url: str,
        security: SecurityConfig,
        redis: Optional[Redis] = None
    ) -> UrlValidationResult:
        """
        Validate URL against SSRF attacks.
        Uses async DNS resolution and optional Redis caching.
        """
        if not security.enable_ssrf_protection:
            return UrlValidationResult.OK

        try:
            hostname = urlparse(url).hostname
        except ValueError:
            return UrlValidationResult.INVALID

        if not hostname:
            return UrlValidationResult.INVALID

        cache_key = f"ssrf:{hash_stable(hostname)}"
        if redis:
            try:
                cached = await redis.get(cache_key)
            except RedisError:
                cached = None
            if cached == "ok":
                return UrlValidationResult.OK
            if cached == "blocked":
                return UrlValidationResult.BLOCKED

        try:
            addr_info = await asyncio.to_thread(
                socket.getaddrinfo,
                hostname,
                None
            )
            ips = [info[4][0] for info in addr_info]
        except socket.gaierror:
            # DNS failed: let the extractor report it, don't cache
            return UrlValidationResult.OK

        is_blocked = False
        for ip_str in ips:
            try:
                if SecurityValidator.is_blocked_ip(ip_str.split("%")[0], security):
                    is_blocked = True
                    break
            except ValueError:
                return UrlValidationResult.INVALID

        if redis:
            try:
                await redis.setex(cache_key, SSRF_CACHE_TTL, "blocked" if is_blocked else "ok")
            except RedisError:
                pass

        return UrlValidationResult.BLOCKED if is_blocked else UrlValidationResult.OK
