from .hash import hash_stable
from .locale import get_locale, safe_url_for_log

__all__ = ["get_locale", "hash_stable", "safe_url_for_log"]
