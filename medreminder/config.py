# medreminder/config.py
import os
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

# Exact thresholds; not configurable.
NOTIFY_WINDOW_MINUTES = 5
DUE_WINDOW_MINUTES = 15

DEFAULT_POLL_SECONDS = 60

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


def _env_flag(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = (env.get(name) or "").strip().lower()
    if raw in _TRUTHY:
        return True
    if raw in _FALSY:
        return False
    return default


def _is_writable_dir(p: Path) -> bool:
    try:
        p.mkdir(parents=True, exist_ok=True)
        t = p / f".writetest.{uuid.uuid4().hex}"
        t.write_text("ok", encoding="utf-8")
        t.unlink(missing_ok=True)
        return True
    except OSError:
        return False


def _app_base_dir(env: Mapping[str, str]) -> Path:
    home = env.get("MEDREMINDER_HOME")
    if home:
        d = Path(home)
        if _is_writable_dir(d):
            return d

    p = env.get("ANDROID_PRIVATE")
    if p:
        d = Path(p) / "medreminder_data"
        if _is_writable_dir(d):
            return d

    d = Path(__file__).resolve().parent.parent / "medreminder_data"
    d.mkdir(parents=True, exist_ok=True)
    return d


@dataclass
class Settings:
    base_dir: Path
    poll_interval: float = DEFAULT_POLL_SECONDS
    sound_enabled: bool = True
    respect_dates: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env
        try:
            poll = float(env.get("MEDREMINDER_POLL_SECONDS", DEFAULT_POLL_SECONDS))
        except ValueError:
            poll = DEFAULT_POLL_SECONDS
        if poll <= 0:
            poll = DEFAULT_POLL_SECONDS
        return cls(
            base_dir=_app_base_dir(env),
            poll_interval=poll,
            sound_enabled=_env_flag(env, "MEDREMINDER_SOUND", True),
            respect_dates=_env_flag(env, "MEDREMINDER_RESPECT_DATES", False),
            log_level=(env.get("MEDREMINDER_LOG_LEVEL") or "INFO").upper(),
        )

    @property
    def store_dir(self) -> Path:
        return self.base_dir

    @property
    def key_path(self) -> Path:
        return self.base_dir / ".enc_key"

    @property
    def log_path(self) -> Path:
        return self.base_dir / "app.log"

    @property
    def tone_dir(self) -> Path:
        return self.base_dir / "tones"
