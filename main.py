# main.py
# Medicine Reminder (KivyMD): dose schedule, due/overdue cards, in-app reminders, encrypted store
#
# Run:   python main.py      (or the `medreminder` console script)
#
# Buildozer notes (in buildozer.spec):
#   requirements = python3,kivy,kivymd,pyjnius,cryptography
#   android.permissions = POST_NOTIFICATIONS,VIBRATE
#
# Reminders only fire while the app is open.

import medreminder  # noqa: F401  (sets KIVY_NO_ARGS before kivy loads)

from datetime import datetime
from typing import Dict, List, Optional

from kivy.clock import Clock
from kivy.core.window import Window
from kivy.lang import Builder

from kivymd.app import MDApp
from kivymd.uix.boxlayout import MDBoxLayout
from kivymd.uix.button import MDFlatButton, MDIconButton, MDRaisedButton
from kivymd.uix.dialog import MDDialog
from kivymd.uix.label import MDLabel
from kivymd.uix.list import IconLeftWidget, OneLineListItem, TwoLineIconListItem
from kivymd.uix.menu import MDDropdownMenu
from kivymd.uix.pickers import MDTimePicker
from kivymd.uix.textfield import MDTextField

from medreminder.audio import AudioHandle
from medreminder.classifier import DoseStatus
from medreminder.config import Settings
from medreminder.device import android_ready, notify
from medreminder.engine import NotificationEngine
from medreminder.errors import InvalidMedicine
from medreminder.logs import clear_ring, configure_logging, logger, ring_text
from medreminder.projector import format_minutes_until
from medreminder.schedule import DoseInstance, Frequency, Medicine, next_dose_time
from medreminder.store import EncryptedStore
from medreminder.tracker import MedicineTracker

if not android_ready() and hasattr(Window, "size"):
    Window.size = (420, 760)

STATUS_TEXT = {
    DoseStatus.TAKEN: "taken",
    DoseStatus.DUE_NOW: "due now",
    DoseStatus.OVERDUE: "overdue",
    DoseStatus.FUTURE: "",
}

def hex_to_rgba(hx: str) -> List[float]:
    hx = (hx or "#3b82f6").lstrip("#")
    try:
        return [int(hx[i:i + 2], 16) / 255.0 for i in (0, 2, 4)] + [1]
    except ValueError:
        return [0.33, 0.62, 0.95, 1]

# -------------------------
# Kivy KV (home / history / settings)
# -------------------------
KV = """
MDScreen:
    MDBoxLayout:
        orientation: "vertical"

        MDTopAppBar:
            id: top_bar
            title: "Medicine Reminder"
            elevation: 2
            right_action_items: [["plus", lambda x: app.show_add_dialog()], ["refresh", lambda x: app.refresh_all()]]

        ScreenManager:
            id: screen_manager

            MDScreen:
                name: "home"
                MDBoxLayout:
                    orientation: "vertical"
                    padding: "12dp"
                    spacing: "10dp"

                    MDLabel:
                        id: stats
                        text: "-"
                        bold: True
                        size_hint_y: None
                        height: "28dp"

                    MDLabel:
                        text: "Next doses"
                        theme_text_color: "Secondary"
                        size_hint_y: None
                        height: "22dp"

                    MDList:
                        id: upcoming_list
                        size_hint_y: None
                        height: self.minimum_height

                    MDLabel:
                        text: "Medicines (tap to mark a dose)"
                        theme_text_color: "Secondary"
                        size_hint_y: None
                        height: "22dp"

                    ScrollView:
                        MDList:
                            id: medicines_list

            MDScreen:
                name: "history"
                MDBoxLayout:
                    orientation: "vertical"
                    padding: "12dp"
                    spacing: "10dp"

                    MDLabel:
                        id: hist_count
                        text: "-"
                        bold: True
                        size_hint_y: None
                        height: "28dp"

                    ScrollView:
                        MDList:
                            id: history_list

            MDScreen:
                name: "settings"
                MDBoxLayout:
                    orientation: "vertical"
                    padding: "12dp"
                    spacing: "10dp"

                    MDBoxLayout:
                        size_hint_y: None
                        height: "48dp"
                        MDLabel:
                            text: "Alert sound"
                        MDSwitch:
                            id: sound_switch
                            active: True
                            on_active: app.set_sound(self.active)

                    MDLabel:
                        id: db_status
                        text: "-"
                        theme_text_color: "Secondary"
                        size_hint_y: None
                        height: "40dp"

                    ScrollView:
                        MDLabel:
                            id: debug_log
                            text: ""
                            font_style: "Caption"
                            size_hint_y: None
                            height: self.texture_size[1]

                    MDBoxLayout:
                        spacing: "10dp"
                        size_hint_y: None
                        height: "48dp"
                        MDRaisedButton:
                            text: "Refresh Log"
                            on_release: app.refresh_log()
                        MDRaisedButton:
                            text: "Clear Log"
                            on_release: app.clear_log()

        MDBottomNavigation:
            MDBottomNavigationItem:
                name: "nav_home"
                text: "Home"
                icon: "home"
                on_tab_press: app.switch_screen("home")
            MDBottomNavigationItem:
                name: "nav_history"
                text: "History"
                icon: "history"
                on_tab_press: app.switch_screen("history")
            MDBottomNavigationItem:
                name: "nav_settings"
                text: "Settings"
                icon: "cog"
                on_tab_press: app.switch_screen("settings")
"""

# -------------------------
# App
# -------------------------
class MedicineReminderApp(MDApp):
    def __init__(self, settings: Optional[Settings] = None, **kwargs):
        super().__init__(**kwargs)
        self.settings = settings or Settings.from_env()
        self.tracker: Optional[MedicineTracker] = None
        self.engine: Optional[NotificationEngine] = None
        self.audio: Optional[AudioHandle] = None
        self._add_dialog: Optional[MDDialog] = None
        self._reminders: Dict[str, MDDialog] = {}
        self._freq_menu: Optional[MDDropdownMenu] = None

    def build(self):
        self.title = "Medicine Reminder"
        self.theme_cls.theme_style = "Dark"
        self.theme_cls.primary_palette = "Blue"
        return Builder.load_string(KV)

    def on_start(self):
        configure_logging(self.settings)
        logger.info(f"app start base={self.settings.base_dir}")

        self.tracker = MedicineTracker(EncryptedStore.open(self.settings), self.settings)
        self.audio = AudioHandle(self.settings.tone_dir)
        self.engine = NotificationEngine(
            self.audio,
            medicines=self.tracker.scheduled_medicines,
            taken=self.tracker.taken_slots,
            take=self.tracker.take_medicine,
            interval=self.settings.poll_interval,
            sound_enabled=self.settings.sound_enabled,
        )
        self.engine.on_trigger(self.show_reminder)
        self.engine.on_retire(self.close_reminder)
        self.tracker.subscribe(self._on_tracker_changed)

        self.root.ids.sound_switch.active = self.settings.sound_enabled
        self.tracker.load()
        self.engine.start()

        Clock.schedule_interval(lambda *_: self.refresh_home(), 60)
        Clock.schedule_interval(lambda *_: self.refresh_log(silent=True), 20)

    def on_stop(self):
        if self.engine:
            self.engine.stop()
        if self.audio:
            self.audio.dispose()

    def _on_tracker_changed(self):
        if self.engine:
            self.engine.tick()
        self.refresh_all()

    # -------------------------
    # Navigation / refresh
    # -------------------------
    def switch_screen(self, name: str):
        self.root.ids.screen_manager.current = name
        if name == "home":
            self.refresh_home()
        elif name == "history":
            self.refresh_history()
        elif name == "settings":
            self.refresh_log()

    def refresh_all(self):
        self.refresh_home()
        self.refresh_history()
        self.refresh_log(silent=True)

    def refresh_home(self):
        if not self.tracker:
            return
        now = datetime.now()
        try:
            st = self.tracker.stats(now)
            pct = "-" if st.adherence_pct is None else f"{st.adherence_pct:g}%"
            self.root.ids.stats.text = f"{st.active} active  •  {st.taken_today} taken today  •  adherence {pct}"

            ul = self.root.ids.upcoming_list
            ul.clear_widgets()
            upcoming = self.tracker.upcoming(now, limit=3)
            if not upcoming:
                ul.add_widget(OneLineListItem(text="No more doses today"))
            for u in upcoming:
                ul.add_widget(OneLineListItem(
                    text=f"{u.time}  {u.medicine.name} {u.medicine.dosage}  ({format_minutes_until(u.minutes_until)})"
                ))

            by_med: Dict[str, List[str]] = {}
            for dose, status in self.tracker.statuses(now):
                label = STATUS_TEXT[status]
                by_med.setdefault(dose.medicine_id, []).append(f"{dose.time} {label}".strip())

            ml = self.root.ids.medicines_list
            ml.clear_widgets()
            for m in self.tracker.medicines:
                if m.as_needed:
                    sub = "As needed"
                else:
                    nxt = next_dose_time(m, now)
                    sub = "  •  ".join(by_med.get(m.id, [])) + (f"   next {nxt}" if nxt else "")
                item = TwoLineIconListItem(
                    text=f"{m.name} ({m.dosage})  {m.frequency.label}",
                    secondary_text=sub,
                )
                item.add_widget(IconLeftWidget(icon="pill", theme_icon_color="Custom",
                                               icon_color=hex_to_rgba(m.color)))
                item.on_release = lambda m=m: self.show_medicine_dialog(m)
                ml.add_widget(item)
        except Exception:
            logger.exception("refresh_home failed")

    def refresh_history(self):
        if not self.tracker:
            return
        try:
            logs = self.tracker.recent_log(limit=10)
            hl = self.root.ids.history_list
            hl.clear_widgets()
            for e in logs:
                item = TwoLineIconListItem(
                    text=f"{e.medicine_name}  ✓ Done",
                    secondary_text=f"Scheduled: {e.time}  •  Taken: {e.taken_at}",
                )
                item.add_widget(IconLeftWidget(icon="check"))
                hl.add_widget(item)
            count = len(self.tracker.todays_log())
            self.root.ids.hist_count.text = f"{count} taken today" if count else "No medications taken today"
        except Exception:
            logger.exception("refresh_history failed")

    def refresh_log(self, silent: bool = False):
        try:
            if not silent:
                logger.info("log refreshed")
            self.root.ids.debug_log.text = ring_text()
            if self.tracker:
                kb = self.tracker.store.size_kb()
                self.root.ids.db_status.text = f"Encrypted store: {kb:.1f} KB  •  Base: {self.settings.base_dir}"
        except Exception:
            logger.exception("refresh_log failed")

    def clear_log(self):
        clear_ring(self.settings.log_path)
        self.root.ids.debug_log.text = ""
        logger.info("log cleared")

    def set_sound(self, active: bool):
        if self.engine and self.engine.sound_enabled != bool(active):
            self.engine.set_sound_enabled(active)
            if active:
                self.audio.play_gentle_pattern()

    # -------------------------
    # Reminders
    # -------------------------
    def show_reminder(self, dose: DoseInstance):
        if dose.id in self._reminders:
            return
        med = dose.medicine
        notify("Medicine Reminder", f"{med.name} • {med.dosage} @ {dose.time}")
        text = f"{med.name} • {med.dosage}\nScheduled for {dose.time}  (Due Now)"
        if med.notes:
            text += f"\n{med.notes}"

        dialog = MDDialog(
            title="Time to take your medication",
            text=text,
            auto_dismiss=False,
            buttons=[
                MDIconButton(icon="volume-high", on_release=lambda *_: self.engine.replay_alert_sound()),
                MDFlatButton(text="Dismiss", on_release=lambda *_: self.engine.dismiss_notification(dose.id)),
                MDRaisedButton(text="Mark as Taken",
                               on_release=lambda *_: self.engine.take_from_notification(dose.id)),
            ],
        )
        self._reminders[dose.id] = dialog
        dialog.open()

    def close_reminder(self, dose: DoseInstance):
        dialog = self._reminders.pop(dose.id, None)
        if dialog:
            dialog.dismiss()

    # -------------------------
    # Medicine dialog (mark taken / delete)
    # -------------------------
    def show_medicine_dialog(self, med: Medicine):
        statuses = {d.time: s for d, s in self.tracker.statuses() if d.medicine_id == med.id}
        dialog: Optional[MDDialog] = None

        def take(t: str):
            if self.tracker.take_medicine(med.id, t):
                if self.engine and self.engine.sound_enabled:
                    self.audio.play_success_pattern()
            dialog.dismiss()

        def delete(*_):
            self.tracker.delete_medicine(med.id)
            dialog.dismiss()

        buttons = [MDFlatButton(text="Delete", on_release=delete)]
        for t, s in statuses.items():
            if s is not DoseStatus.TAKEN:
                buttons.append(MDRaisedButton(text=f"Take {t}", on_release=lambda _, t=t: take(t)))
        buttons.append(MDFlatButton(text="Close", on_release=lambda *_: dialog.dismiss()))

        lines = [f"{t}: {STATUS_TEXT[s] or 'later'}" for t, s in statuses.items()] or ["As needed"]
        dialog = MDDialog(title=f"{med.name} • {med.dosage}", text="\n".join(lines), buttons=buttons)
        dialog.open()

    # -------------------------
    # Add medicine dialog (frequency menu + time picker)
    # -------------------------
    def show_add_dialog(self):
        times: List[str] = []
        state = {"frequency": Frequency.ONCE_DAILY}

        content = MDBoxLayout(orientation="vertical", spacing="10dp", padding="10dp", size_hint_y=None)
        content.bind(minimum_height=content.setter("height"))

        name = MDTextField(hint_text="Medicine name *")
        dosage = MDTextField(hint_text="Dosage * (e.g., 500mg)")
        start_date = MDTextField(hint_text="Start date (YYYY-MM-DD)", text=datetime.now().strftime("%Y-%m-%d"))
        end_date = MDTextField(hint_text="End date (YYYY-MM-DD) optional")
        notes = MDTextField(hint_text="Notes (optional)")
        error = MDLabel(text="", theme_text_color="Error", size_hint_y=None, height="22dp")

        freq_btn = MDFlatButton(text=f"Frequency: {state['frequency'].label}")
        times_box = MDBoxLayout(orientation="vertical", spacing="6dp", size_hint_y=None)
        times_box.bind(minimum_height=times_box.setter("height"))

        def redraw_times():
            times_box.clear_widgets()
            need = state["frequency"].slots
            times_box.add_widget(MDLabel(text=f"Times {len(times)}/{need}", size_hint_y=None, height="22dp"))
            for t in times:
                row = MDBoxLayout(orientation="horizontal", size_hint_y=None, height="38dp")
                row.add_widget(MDLabel(text=t))
                row.add_widget(MDIconButton(icon="close", on_release=lambda _, t=t: remove_time(t)))
                times_box.add_widget(row)

        def set_frequency(freq: Frequency):
            state["frequency"] = freq
            freq_btn.text = f"Frequency: {freq.label}"
            del times[freq.slots:]
            redraw_times()
            if self._freq_menu:
                self._freq_menu.dismiss()

        self._freq_menu = MDDropdownMenu(
            caller=freq_btn,
            items=[{"text": f.label, "viewclass": "OneLineListItem",
                    "on_release": lambda f=f: set_frequency(f)} for f in Frequency],
            width_mult=4,
        )
        freq_btn.bind(on_release=lambda *_: self._freq_menu.open())

        def add_time(*_):
            if len(times) >= state["frequency"].slots:
                return
            picker = MDTimePicker()

            def on_save(_, time_obj):
                t = f"{time_obj.hour:02d}:{time_obj.minute:02d}"
                if t not in times:
                    times.append(t)
                    times.sort()
                redraw_times()
            picker.bind(on_save=on_save)
            picker.open()

        def remove_time(t: str):
            if t in times:
                times.remove(t)
            redraw_times()

        for w in (name, dosage, freq_btn, times_box, MDRaisedButton(text="Add time", on_release=add_time),
                  start_date, end_date, notes, error):
            content.add_widget(w)
        redraw_times()

        def save(*_):
            try:
                self.tracker.add_medicine(
                    name=name.text, dosage=dosage.text, frequency=state["frequency"], times=list(times),
                    start_date=start_date.text, end_date=end_date.text, notes=notes.text,
                )
            except InvalidMedicine as e:
                error.text = str(e)
                return
            self._add_dialog.dismiss()
            if self.engine and self.engine.sound_enabled:
                self.audio.play_success_pattern()

        self._add_dialog = MDDialog(
            title="Add medicine",
            type="custom",
            content_cls=content,
            buttons=[
                MDFlatButton(text="Cancel", on_release=lambda *_: self._add_dialog.dismiss()),
                MDRaisedButton(text="Save", on_release=save),
            ],
        )
        self._add_dialog.open()

# -------------------------
# Entrypoint
# -------------------------
def main():
    MedicineReminderApp().run()

if __name__ == "__main__":
    main()
