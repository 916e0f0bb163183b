from random import Random
from typing import Optional


class DefaultBackoffStrategy:
    """Doubles the delay for each retry, up to ``max_delay``."""

    def __init__(self, max_delay: float):
        self.__max_delay = max_delay

    def apply_backoff(self, delay: float, retry_count: int) -> float:
        d = delay * (2 ** retry_count)
        return d if d <= self.__max_delay else self.__max_delay


class DefaultJitterStrategy:
    """Subtracts a pseudo-random fraction, at most ``ratio``, from each delay."""

    def __init__(self, ratio: float, rand_seed: Optional[int] = None):
        self.__ratio = ratio
        self.__random = Random(rand_seed)

    def apply_jitter(self, delay: float) -> float:
        return delay - (self.__random.random() * self.__ratio * delay)


class RetryDelayStrategy:
    """
    Computes the wait before each retry of one request. A new instance is created per request, so
    the retry count starts at zero each time; instances are not safe for concurrent use.

    :param base_delay: delay in seconds before the first retry
    :param backoff_strategy: optional :class:`DefaultBackoffStrategy`
    :param jitter_strategy: optional :class:`DefaultJitterStrategy`
    """

    def __init__(self, base_delay: float, backoff_strategy=None, jitter_strategy=None):
        self.__base_delay = base_delay
        self.__backoff = backoff_strategy
        self.__jitter = jitter_strategy
        self.__retry_count = 0

    @property
    def retry_count(self) -> int:
        return self.__retry_count

    def next_retry_delay(self) -> float:
        delay = self.__base_delay
        if self.__backoff:
            delay = self.__backoff.apply_backoff(delay, self.__retry_count)
        self.__retry_count += 1
        if self.__jitter:
            delay = self.__jitter.apply_jitter(delay)
        return delay
