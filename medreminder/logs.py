# medreminder/logs.py
import logging
from pathlib import Path
from threading import RLock
from typing import Optional

_LOG_LOCK = RLock()

# -------------------------
# Logging ring buffer
# -------------------------
class _RingLog:
    def __init__(self, max_lines=800):
        self.max_lines = int(max_lines)
        self._lines = []
        self._lock = RLock()

    def add(self, line: str):
        line = (line or "").rstrip("\n")
        if not line:
            return
        with self._lock:
            self._lines.append(line)
            if len(self._lines) > self.max_lines:
                self._lines = self._lines[-self.max_lines:]

    def text(self) -> str:
        with self._lock:
            return "\n".join(self._lines)

    def clear(self):
        with self._lock:
            self._lines = []

_RING = _RingLog()

class _FileAndRingHandler(logging.Handler):
    def __init__(self, log_path: Optional[Path] = None):
        super().__init__()
        self.log_path = log_path
        self._fmt = logging.Formatter("%(asctime)s %(levelname)s %(message)s")

    def emit(self, record):
        try:
            msg = self._fmt.format(record)
        except Exception:
            msg = str(record.getMessage())
        _RING.add(msg)
        if self.log_path is None:
            return
        try:
            with _LOG_LOCK:
                self.log_path.parent.mkdir(parents=True, exist_ok=True)
                with self.log_path.open("a", encoding="utf-8") as f:
                    f.write(msg + "\n")
        except Exception:
            self.handleError(record)

logger = logging.getLogger("medreminder")
logger.setLevel(logging.INFO)


def configure_logging(settings) -> logging.Logger:
    """Attach the file + ring handler once; later calls only retarget the file."""
    logger.setLevel(getattr(logging, str(settings.log_level).upper(), logging.INFO))
    for h in logger.handlers:
        if isinstance(h, _FileAndRingHandler):
            h.log_path = settings.log_path
            return logger
    logger.addHandler(_FileAndRingHandler(settings.log_path))
    return logger


def ring_text() -> str:
    return _RING.text()


def clear_ring(log_path: Optional[Path] = None):
    _RING.clear()
    if log_path is not None:
        try:
            log_path.unlink(missing_ok=True)
        except OSError:
            logger.exception("log file removal failed")
