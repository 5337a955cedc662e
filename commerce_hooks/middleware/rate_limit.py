"""
Shared slowapi limiter, registered on the app in main.py.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from commerce_hooks.config import settings

limiter = Limiter(key_func=get_remote_address)

DEFAULT_LIMIT = f"{settings.RATE_LIMIT_PER_MINUTE}/minute"
