import secrets
import string
import threading
import time
from typing import Callable

ALPHABET = string.ascii_lowercase + string.digits


class TransactionIdGenerator:
    """
    Builds payment-attempt identifiers: {prefix}{epoch millis}{random suffix}.

    Example: QR1718000000123k3j9xq

    Uniqueness is probabilistic (millisecond clock + random suffix); nothing is
    looked up in storage. The unique index on payment_attempts.transaction_id is
    the backstop and a collision surfaces as an integrity error.
    """

    def __init__(self, suffix_length: int = 6, clock: Callable[[], float] = time.time):
        if suffix_length < 4:
            raise ValueError("suffix_length must be >= 4")
        self.suffix_length = suffix_length
        self._clock = clock
        self._lock = threading.Lock()
        self._last_millis = 0

    def generate(self, prefix: str) -> str:
        with self._lock:
            millis = int(self._clock() * 1000)
            # never hand out a timestamp older than one already issued
            if millis < self._last_millis:
                millis = self._last_millis
            self._last_millis = millis
        suffix = "".join(secrets.choice(ALPHABET) for _ in range(self.suffix_length))
        return f"{prefix}{millis}{suffix}"
