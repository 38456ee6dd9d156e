from dataclasses import dataclass, field
from typing import Optional
import time

from redis.asyncio import Redis


@dataclass
class RuntimeState:
    """Runtime state owned by one application instance"""
    redis: Optional[Redis] = None
    extractor_version: str = "unknown"
    started_at: float = field(default_factory=time.time)
