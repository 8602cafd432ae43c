from typing import Callable, Optional, Tuple, TypeVar

import backoff

T = TypeVar("T")


def retry_with_fixed_delay(
    operation: Callable[[], T],
    *,
    attempts: int = 2,
    delay: float = 0.25,
    exceptions: Tuple[type, ...] = (Exception,),
    on_retry: Optional[Callable[[dict], None]] = None,
) -> T:
    """Execute ``operation`` up to ``attempts`` times with a constant pause.

    Only ``exceptions`` are retried; the last one propagates once attempts
    are exhausted.
    """

    @backoff.on_exception(
        backoff.constant,
        exceptions,
        max_tries=attempts,
        interval=delay,
        jitter=None,
        on_backoff=[on_retry] if on_retry else [],
        logger=None,
    )
    def _run() -> T:
        return operation()

    return _run()
