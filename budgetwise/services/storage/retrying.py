"""
Retry policy for remote storage calls.

Three attempts with exponential backoff. Errors flagged as not
retryable (duplicates, undecodable payloads) fail on the first attempt.
"""

from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential


def _is_retryable(error: BaseException) -> bool:
    return getattr(error, "retryable", True)


remote_retry = retry(
    retry=retry_if_exception(_is_retryable),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)
