"""
QR-ID counter.

Hands out sequential quality-request ids per environment:

    QR-002, QR-003, ... QR-999, QR-1000

The counter lives in injected storage under ``qr_counter_<environment>``.
Storage is either the cache backend (Redis or the in-memory fallback,
anything with get, set(nx=) and incr) or a plain dict.
"""

import logging
import re
import threading

logger = logging.getLogger(__name__)

START_VALUE = 2
_QR_ID_RE = re.compile(r"^QR-(\d+)$")
_dict_lock = threading.Lock()


def format_qr_id(number: int) -> str:
    return f"QR-{number:03d}"


def parse_qr_id(qr_id: str) -> int | None:
    """``"QR-042"`` → 42; None for anything else."""
    match = _QR_ID_RE.match((qr_id or "").strip())
    return int(match.group(1)) if match else None


class QRCounter:
    """Sequential id generator over key-value storage.

    Usage:
        counter = QRCounter(cache_service.get_backend(), "production")
        counter.next_id()   # "QR-002" on first use
    """

    def __init__(self, storage, environment: str) -> None:
        if not environment:
            raise ValueError("environment is required")
        self.storage = storage
        self.environment = environment
        self.key = f"qr_counter_{environment}"

    # ── storage adapters ─────────────────────────────────────────────────

    def _read(self) -> int | None:
        raw = self.storage.get(self.key)
        if raw is None:
            return None
        return int(raw)

    def _write(self, value: int) -> None:
        if isinstance(self.storage, dict):
            self.storage[self.key] = value
        else:
            self.storage.set(self.key, value)

    def _seed(self) -> None:
        """Create the counter at ``START_VALUE - 1`` unless it already exists."""
        if isinstance(self.storage, dict):
            self.storage.setdefault(self.key, START_VALUE - 1)
        else:
            self.storage.set(self.key, START_VALUE - 1, nx=True)

    def _incr(self) -> int:
        if isinstance(self.storage, dict):
            with _dict_lock:
                value = int(self.storage[self.key]) + 1
                self.storage[self.key] = value
            return value
        return int(self.storage.incr(self.key))

    # ── public API ───────────────────────────────────────────────────────

    def next_id(self) -> str:
        """Allocate the next id. The first id is ``QR-002``.

        Seed and increment are each atomic in the storage, so concurrent
        callers on an empty counter still get distinct ids.
        """
        self._seed()
        value = self._incr()
        logger.info("Allocated %s (env=%s)", format_qr_id(value), self.environment)
        return format_qr_id(value)

    def current(self) -> int:
        """Last allocated number; ``START_VALUE - 1`` before the first allocation."""
        value = self._read()
        return START_VALUE - 1 if value is None else value

    def reset(self, value: int = START_VALUE) -> None:
        """Make the next allocation return ``QR-{value}``."""
        if value < 1:
            raise ValueError("reset value must be positive")
        self._write(value - 1)
        logger.warning("QR counter %s reset; next id %s", self.key, format_qr_id(value))

    def sync_to(self, latest_id: str) -> int:
        """Align with an externally known latest id (e.g. from a tracker export).

        The counter never moves backwards. Returns the current value.
        """
        number = parse_qr_id(latest_id)
        if number is None:
            raise ValueError(f"not a QR id: {latest_id!r}")
        if number > self.current():
            self._write(number)
            logger.info("QR counter %s synced to %s", self.key, latest_id)
        return self.current()
