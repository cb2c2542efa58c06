# medreminder/audio.py
from __future__ import annotations

import math
import wave
from array import array
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Optional, Sequence, Tuple

from . import device
from .errors import AudioPlaybackError
from .logs import logger

SAMPLE_RATE = 22050
ATTACK_S = 0.01
FLOOR = 0.001


@dataclass(frozen=True)
class ToneSegment:
    frequency: float
    duration: float
    volume: float = 0.3
    pause: float = 0.0  # silence after the tone, before the next segment

    @property
    def sound_key(self) -> Tuple[float, float, float]:
        return (self.frequency, self.duration, self.volume)


ALARM_PATTERN = (
    ToneSegment(800, 0.3, 0.4, pause=0.1),
    ToneSegment(800, 0.3, 0.4, pause=0.1),
    ToneSegment(1000, 0.5, 0.5),
)

SUCCESS_PATTERN = (
    ToneSegment(523, 0.2, 0.3, pause=0.05),  # C
    ToneSegment(659, 0.2, 0.3, pause=0.05),  # E
    ToneSegment(784, 0.3, 0.3),              # G
)

GENTLE_PATTERN = (
    ToneSegment(600, 0.4, 0.3, pause=0.2),
    ToneSegment(800, 0.4, 0.3),
)


def tone_samples(seg: ToneSegment, sample_rate: int = SAMPLE_RATE) -> array:
    """16-bit mono sine with a short linear attack and an exponential tail."""
    n = max(1, int(sample_rate * seg.duration))
    vol = max(FLOOR, min(1.0, float(seg.volume)))
    decay_len = max(seg.duration - ATTACK_S, 1e-6)
    out = array("h")
    for i in range(n):
        t = i / sample_rate
        if t < ATTACK_S:
            gain = vol * (t / ATTACK_S)
        else:
            gain = vol * (FLOOR / vol) ** ((t - ATTACK_S) / decay_len)
        out.append(int(32767 * gain * math.sin(2 * math.pi * seg.frequency * t)))
    return out


def render_tone(cache_dir: Path, seg: ToneSegment, sample_rate: int = SAMPLE_RATE) -> Path:
    f, d, v = seg.sound_key
    path = Path(cache_dir) / f"tone_{int(f)}_{int(d * 1000)}_{int(v * 100)}.wav"
    if path.exists():
        return path
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(".wav.tmp")
    with wave.open(str(tmp), "wb") as w:
        w.setnchannels(1)
        w.setsampwidth(2)
        w.setframerate(sample_rate)
        w.writeframes(tone_samples(seg, sample_rate).tobytes())
    tmp.replace(path)
    return path


class KivyToneBackend:
    """Plays rendered tones through Kivy's SoundLoader, one cached Sound per tone."""

    def __init__(self, cache_dir: Path):
        from kivy.core.audio import SoundLoader
        self._loader = SoundLoader
        self.cache_dir = Path(cache_dir)
        self._sounds: Dict[Tuple[float, float, float], object] = {}

    def play_tone(self, seg: ToneSegment):
        sound = self._sounds.get(seg.sound_key)
        if sound is None:
            path = render_tone(self.cache_dir, seg)
            sound = self._loader.load(str(path))
            if sound is None:
                raise AudioPlaybackError(f"no audio provider could load {path.name}")
            self._sounds[seg.sound_key] = sound
        sound.stop()
        sound.play()

    def close(self):
        for sound in self._sounds.values():
            try:
                sound.unload()
            except Exception:
                logger.exception("sound unload failed")
        self._sounds.clear()


class AudioHandle:
    """
    Owned audio resource for the reminder engine.

    The backend is created on the first playback and released by
    ``dispose()``. A failing backend never raises out of the ``play_*``
    methods: the failure is logged and the rest of the sequence is dropped.
    Segments after the first are scheduled on the clock, so a pattern never
    blocks the caller.
    """

    def __init__(self, cache_dir: Path, clock=None,
                 backend_factory: Optional[Callable[[], object]] = None):
        self.cache_dir = Path(cache_dir)
        self._clock = clock
        self._backend_factory = backend_factory
        self._backend = None
        self._disposed = False

    @property
    def active(self) -> bool:
        return self._backend is not None

    def _get_clock(self):
        if self._clock is None:
            self._clock = device.kivy_clock()
        return self._clock

    def _ensure(self):
        if self._disposed:
            raise AudioPlaybackError("audio handle disposed")
        if self._backend is None:
            factory = self._backend_factory or (lambda: KivyToneBackend(self.cache_dir))
            try:
                self._backend = factory()
            except Exception as e:
                raise AudioPlaybackError(f"audio backend unavailable: {e}") from e
            logger.info("audio backend ready")
        return self._backend

    def play(self, pattern: Sequence[ToneSegment], name: str = "tone") -> bool:
        if not pattern:
            return False
        try:
            backend = self._ensure()
        except AudioPlaybackError as e:
            logger.warning(f"{name} pattern skipped: {e}")
            return False
        return self._step(backend, name, tuple(pattern), 0)

    def _step(self, backend, name: str, pattern: Tuple[ToneSegment, ...], i: int) -> bool:
        if backend is not self._backend:
            return False
        seg = pattern[i]
        try:
            backend.play_tone(seg)
        except Exception as e:
            logger.warning(f"{name} pattern aborted at segment {i}: {e}")
            return False
        if i + 1 < len(pattern):
            self._get_clock().schedule_once(
                lambda dt: self._step(backend, name, pattern, i + 1),
                seg.duration + seg.pause,
            )
        return True

    def play_alarm_pattern(self) -> bool:
        return self.play(ALARM_PATTERN, "alarm")

    def play_success_pattern(self) -> bool:
        return self.play(SUCCESS_PATTERN, "success")

    def play_gentle_pattern(self) -> bool:
        return self.play(GENTLE_PATTERN, "gentle")

    def dispose(self):
        backend, self._backend = self._backend, None
        self._disposed = True
        if backend is not None and hasattr(backend, "close"):
            try:
                backend.close()
            except Exception:
                logger.exception("audio backend close failed")
            logger.info("audio backend disposed")
