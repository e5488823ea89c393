import asyncio
import time
import logging
from functools import wraps
from typing import Callable, Any

logger = logging.getLogger(__name__)

def timing_debug(func: Callable) -> Callable:
    """
    Decorator: log how long a call took at DEBUG level.

    Works for both coroutine functions and plain functions.
    """
    func_name = f"{func.__module__}.{func.__qualname__}"

    @wraps(func)
    async def async_wrapper(*args, **kwargs) -> Any:
        start_time = time.perf_counter()
        logger.debug(f"[timing] {func_name} started")
        try:
            result = await func(*args, **kwargs)
            logger.debug(f"[timing] {func_name} finished in {time.perf_counter() - start_time:.4f}s")
            return result
        except Exception as e:
            logger.debug(f"[timing] {func_name} failed after {time.perf_counter() - start_time:.4f}s: {e}")
            raise

    @wraps(func)
    def sync_wrapper(*args, **kwargs) -> Any:
        start_time = time.perf_counter()
        logger.debug(f"[timing] {func_name} started")
        try:
            result = func(*args, **kwargs)
            logger.debug(f"[timing] {func_name} finished in {time.perf_counter() - start_time:.4f}s")
            return result
        except Exception as e:
            logger.debug(f"[timing] {func_name} failed after {time.perf_counter() - start_time:.4f}s: {e}")
            raise

    if asyncio.iscoroutinefunction(func):
        return async_wrapper
    return sync_wrapper
