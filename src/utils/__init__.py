# Utils: cache, background task runner
from src.utils.cache import TTLCache, make_key
from src.utils.task_runner import BackgroundRunner, get_background_runner, submit_background

__all__ = [
    "TTLCache",
    "make_key",
    "BackgroundRunner",
    "get_background_runner",
    "submit_background",
]
