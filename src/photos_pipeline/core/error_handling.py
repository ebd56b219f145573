# src/photos_pipeline/core/error_handling.py

import functools
import logging
import time

from botocore.exceptions import BotoCoreError, ClientError
from PIL import UnidentifiedImageError

from .exceptions import DerivationError, PhotosPipelineError, S3Error

RETRYABLE_S3_ERROR_CODES = (
    "ProvisionedThroughputExceededException",
    "ThrottlingException",
    "SlowDown",
    "RequestTimeout",
    "InternalError",
)


def _client_error_code(exc):
    if isinstance(exc, ClientError):
        return exc.response.get("Error", {}).get("Code")
    return None


def with_error_handling(func):
    """
    A decorator to wrap S3 and codec calls with standardized error handling.

    botocore failures become ``S3Error``, Pillow decode failures become
    ``DerivationError``. Pipeline errors and anything else propagate unchanged.
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        logger = logging.getLogger(func.__module__ + "." + func.__name__)
        try:
            return func(*args, **kwargs)
        except PhotosPipelineError:
            raise
        except Exception as e:
            logger.error(f"Error in '{func.__name__}': {e}", exc_info=True)
            if isinstance(e, (ClientError, BotoCoreError)):
                raise S3Error(f"S3 operation failed in {func.__name__}: {e}") from e
            if isinstance(e, UnidentifiedImageError):
                raise DerivationError(f"Failed to identify image in {func.__name__}: {e}") from e
            raise
    return wrapper


def retry_s3_operation(max_attempts=3, initial_delay=0.5, backoff_factor=2):
    """
    Decorator to retry S3 operations with exponential backoff.

    Only ``S3Error`` caused by a throttling style ``ClientError`` is retried;
    every other failure is raised on the first attempt.
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            logger = logging.getLogger(func.__module__ + "." + func.__name__)
            delay = initial_delay
            for attempt in range(1, max_attempts + 1):
                try:
                    return func(*args, **kwargs)
                except S3Error as e:
                    error_code = _client_error_code(e.__cause__)
                    if error_code not in RETRYABLE_S3_ERROR_CODES:
                        logger.error(f"S3 operation '{func.__name__}' failed with non-retryable S3Error: {e}")
                        raise
                    if attempt >= max_attempts:
                        logger.error(
                            f"S3 operation '{func.__name__}' failed after {max_attempts} attempts. Error: {e}"
                        )
                        raise
                    logger.info(
                        f"S3 operation '{func.__name__}' throttled ({error_code}). "
                        f"Attempt {attempt}/{max_attempts}. Retrying in {delay:.2f}s."
                    )
                    time.sleep(delay)
                    delay *= backoff_factor
            raise S3Error(f"S3 operation '{func.__name__}' failed after {max_attempts} attempts")
        return wrapper
    return decorator
