from slowapi import Limiter
from slowapi.util import get_remote_address

from caption_room.app_config import get_app_environ_config

limiter = Limiter(key_func=get_remote_address)


def upload_rate_limit():
    return limiter.limit(get_app_environ_config().UPLOAD_RATE_LIMIT)
