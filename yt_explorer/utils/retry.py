import time
import logging
import functools

logger = logging.getLogger(__name__)


def is_retryable(exc: Exception) -> bool:
    """True for rate limits (429), server errors (5xx) and connection problems."""
    status_code = getattr(exc, "status_code", None)
    if status_code is not None:
        return status_code == 429 or status_code >= 500
    # Wrapped transport errors keep the original exception as __cause__
    error_name = type(exc.__cause__ or exc).__name__
    return "Connection" in error_name or "Timeout" in error_name


def retry_with_backoff(max_retries: int = 3, base_delay: float = 2.0, max_delay: float = 60.0):
    """Decorator for retrying API calls with exponential backoff.

    Retries on rate limits (429) and transient server errors (5xx).
    Does NOT retry on client errors (4xx except 429).

    ``max_retries`` may be overridden per instance by setting a
    ``max_retries`` attribute on the object whose method is decorated.
    """

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            retries = max_retries
            if args and isinstance(getattr(args[0], "max_retries", None), int):
                retries = args[0].max_retries

            for attempt in range(retries + 1):
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    if not is_retryable(e) or attempt == retries:
                        raise

                    delay = min(base_delay * (2**attempt), max_delay)

                    # Honour Retry-After when the server sent one
                    retry_after = getattr(e, "retry_after", None)
                    if retry_after:
                        delay = max(delay, float(retry_after))

                    logger.warning(
                        f"{type(e).__name__}: retry {attempt + 1}/{retries} in {delay:.1f}s"
                    )
                    time.sleep(delay)

        return wrapper

    return decorator
