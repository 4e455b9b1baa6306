RETRYABLE_STATUSES = frozenset({429})


def is_retryable_status(status_code: int) -> bool:
    # Rate limiting and server errors are worth another try; other 4xx are caller errors
    return status_code in RETRYABLE_STATUSES or status_code >= 500


def compute_backoff_seconds(attempt: int, base: float = 0.5) -> float:
    # linear backoff: base, 2*base, 3*base, ...
    return base * max(1, attempt)
