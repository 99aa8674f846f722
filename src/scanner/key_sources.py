#!/usr/bin/env python3
"""
Key sources for the scan decoder
Delivers key presses from the host UI (KeyEventBus) or from USB HID keyboards via evdev
"""

import asyncio
import logging
import string
from typing import Callable, Dict, Iterable, List, Optional

from scanner.decoder import KeyEvent
from utils.listeners import ListenerRegistry

try:
    import evdev
    from evdev import ecodes
    EVDEV_AVAILABLE = True
except ImportError:
    EVDEV_AVAILABLE = False

logger = logging.getLogger(__name__)


class KeySourceUnavailable(Exception):
    """Raised when a key source cannot deliver events"""
    pass


class KeyEventBus:
    """In-process key source; a host UI publishes its key presses here"""

    def __init__(self):
        self._listeners = ListenerRegistry("key event bus")

    def add_listener(self, callback: Callable[[KeyEvent], object]) -> Callable[[], None]:
        return self._listeners.add(callback)

    def publish(self, key: str, in_text_input: bool = False) -> KeyEvent:
        """
        Deliver a key press to every listener

        Returns:
            KeyEvent: The delivered event, so the host can honour default_prevented
        """
        event = KeyEvent(key, in_text_input=in_text_input)
        self._listeners.notify(event)
        return event

    @property
    def listener_count(self) -> int:
        return len(self._listeners)


def _build_key_maps():
    """Map evdev key codes to characters, unshifted and shifted"""
    if not EVDEV_AVAILABLE:
        return {}, {}

    plain: Dict[int, str] = {}
    shifted: Dict[int, str] = {}

    shifted_digits = ")!@#$%^&*("
    for digit in string.digits:
        code = getattr(ecodes, f"KEY_{digit}")
        plain[code] = digit
        shifted[code] = shifted_digits[int(digit)]
        # Numeric keypad ignores shift
        keypad = getattr(ecodes, f"KEY_KP{digit}")
        plain[keypad] = digit
        shifted[keypad] = digit

    for letter in string.ascii_uppercase:
        code = getattr(ecodes, f"KEY_{letter}")
        plain[code] = letter.lower()
        shifted[code] = letter

    plain[ecodes.KEY_MINUS] = "-"
    shifted[ecodes.KEY_MINUS] = "_"
    plain[ecodes.KEY_KPMINUS] = "-"
    shifted[ecodes.KEY_KPMINUS] = "-"
    plain[ecodes.KEY_SPACE] = " "
    shifted[ecodes.KEY_SPACE] = " "

    for name in ("KEY_ENTER", "KEY_KPENTER"):
        plain[getattr(ecodes, name)] = "Enter"
        shifted[getattr(ecodes, name)] = "Enter"

    return plain, shifted


KEY_MAP, SHIFTED_KEY_MAP = _build_key_maps()
SHIFT_KEYS = {ecodes.KEY_LEFTSHIFT, ecodes.KEY_RIGHTSHIFT} if EVDEV_AVAILABLE else set()

# evdev key event values
KEY_UP = 0
KEY_DOWN = 1


class EvdevKeySource:
    """Reads key presses from USB HID keyboards (barcode scanners in keyboard mode)"""

    def __init__(self, device_paths: Optional[Iterable[str]] = None, grab: bool = False, loop=None):
        """
        Args:
            device_paths: Input devices to read (defaults to every keyboard-like device)
            grab: Take exclusive access so scans do not also reach the console
            loop: Event loop to read on (defaults to the running loop)
        """
        self.device_paths = list(device_paths) if device_paths else None
        self.grab = grab
        self._loop = loop
        self._listeners = ListenerRegistry("evdev key source")
        self._devices: List = []
        self._tasks: List[asyncio.Task] = []
        self._shift = False

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def add_listener(self, callback: Callable[[KeyEvent], object]) -> Callable[[], None]:
        if not self.running:
            self.start()
        return self._listeners.add(callback)

    def _find_keyboard_devices(self) -> List:
        paths = self.device_paths or evdev.list_devices()
        keyboards = []
        for path in paths:
            try:
                device = evdev.InputDevice(path)
            except OSError as e:
                logger.debug(f"Cannot open input device {path}: {e}")
                continue
            # Barcode scanners appear as keyboards
            keys = device.capabilities().get(ecodes.EV_KEY, [])
            if ecodes.KEY_ENTER in keys and ecodes.KEY_0 in keys:
                keyboards.append(device)
            else:
                device.close()
        return keyboards

    def start(self):
        """Open the input devices and start reading them on the event loop"""
        if self.running:
            return
        if not EVDEV_AVAILABLE:
            raise KeySourceUnavailable("evdev is not installed")

        try:
            loop = self._loop or asyncio.get_running_loop()
        except RuntimeError as e:
            raise KeySourceUnavailable(f"No running event loop: {e}") from e

        devices = self._find_keyboard_devices()
        if not devices:
            raise KeySourceUnavailable("No keyboard-like input devices found")

        for device in devices:
            if self.grab:
                device.grab()
            self._devices.append(device)
            self._tasks.append(loop.create_task(self._read_device(device)))
            logger.info(f"✅ Monitoring input device: {device.name} ({device.path})")

    def stop(self):
        """Stop reading and release the devices"""
        for task in self._tasks:
            task.cancel()
        self._tasks = []

        for device in self._devices:
            try:
                if self.grab:
                    device.ungrab()
                device.close()
            except OSError as e:
                logger.debug(f"Device close error: {e}")
        self._devices = []
        self._shift = False

    async def _read_device(self, device):
        try:
            async for event in device.async_read_loop():
                if event.type == ecodes.EV_KEY:
                    self.process_key_event(event.code, event.value)
        except OSError as e:
            logger.warning(f"⚠️ Input device {device.path} disconnected: {e}")

    def process_key_event(self, code: int, value: int):
        """Translate one evdev EV_KEY event and publish key presses"""
        if code in SHIFT_KEYS:
            self._shift = value != KEY_UP
            return

        # Ignore releases and auto-repeat
        if value != KEY_DOWN:
            return

        key = (SHIFTED_KEY_MAP if self._shift else KEY_MAP).get(code)
        if key is None:
            logger.debug(f"Unhandled key code: {code}")
            return

        # Input devices carry no UI focus
        self._listeners.notify(KeyEvent(key, in_text_input=False))
