# medreminder/device.py
# Platform glue: clock, haptics and system notifications.
import time
from typing import Sequence

from kivy.utils import platform as _kivy_platform

from .logs import logger

try:
    from jnius import autoclass, cast
except Exception:
    autoclass = None
    cast = None

TAKE_PATTERN = (100, 50, 100)
ALARM_PATTERN = (200, 100, 200, 100, 200)

CHANNEL_ID = "medreminder_doses"


def android_ready() -> bool:
    return _kivy_platform == "android" and autoclass is not None


def kivy_clock():
    from kivy.clock import Clock
    return Clock


def _activity():
    PythonActivity = autoclass("org.kivy.android.PythonActivity")
    return PythonActivity.mActivity


def vibrate(pattern: Sequence[int] = TAKE_PATTERN):
    """
    ``pattern`` alternates on/off durations in milliseconds, starting with on.
    Devices without a vibrator (or non-Android platforms) do nothing.
    """
    if not android_ready():
        logger.debug(f"vibrate skipped (platform={_kivy_platform})")
        return
    try:
        Context = autoclass("android.content.Context")
        Vibrator = autoclass("android.os.Vibrator")
        vib = cast(Vibrator, _activity().getSystemService(Context.VIBRATOR_SERVICE))
        if vib is None or not vib.hasVibrator():
            return
        # Android patterns start with an off delay.
        vib.vibrate([0] + [int(p) for p in pattern], -1)
    except Exception:
        logger.exception("vibrate failed")


def notify(title: str, text: str):
    if not android_ready():
        logger.info(f"[in-app reminder] {title}: {text}")
        return
    try:
        activity = _activity()
        Context = autoclass("android.content.Context")
        NotificationManager = autoclass("android.app.NotificationManager")
        NotificationChannel = autoclass("android.app.NotificationChannel")
        Notification = autoclass("android.app.Notification")
        Build = autoclass("android.os.Build")

        nm = activity.getSystemService(Context.NOTIFICATION_SERVICE)

        if Build.VERSION.SDK_INT >= 26:
            ch = NotificationChannel(CHANNEL_ID, "Dose reminders", NotificationManager.IMPORTANCE_HIGH)
            ch.setDescription("Reminders raised while the app is open")
            nm.createNotificationChannel(ch)
            builder = Notification.Builder(activity, CHANNEL_ID)
        else:
            builder = Notification.Builder(activity)

        builder.setContentTitle(title)
        builder.setContentText(text)
        builder.setSmallIcon(activity.getApplicationInfo().icon)
        builder.setAutoCancel(True)

        nid = int(time.time()) & 0x7fffffff
        nm.notify(nid, builder.build())
    except Exception:
        logger.exception("notify failed")
