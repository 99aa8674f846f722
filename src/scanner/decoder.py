"""
Keystroke decoder for USB HID barcode scanners working in keyboard mode.

Scanners type a barcode far faster than a person can, usually followed by
Enter. The decoder buffers qualifying characters, flushes on Enter or after a
quiet period, validates the text and reports it through callbacks.
"""
import asyncio
import logging
import re
from dataclasses import dataclass, fields
from typing import Any, Callable, Dict, List, Optional

from scanner.barcode_validator import (
    DEFAULT_MAX_LENGTH,
    DEFAULT_MIN_LENGTH,
    BarcodeValidationError,
    validate_barcode,
)

logger = logging.getLogger(__name__)

LISTENER_INIT_ERROR = "Failed to initialize scanner listener"

IDLE = "IDLE"
ACCUMULATING = "ACCUMULATING"


class KeyEvent:
    """A single key press delivered by a key source"""

    def __init__(self, key: str, in_text_input: bool = False):
        """
        Args:
            key: One-character string for printable keys, otherwise a key name ("Enter", "Shift", ...)
            in_text_input: True when UI focus is on a text-entry control
        """
        self.key = key
        self.in_text_input = in_text_input
        self.default_prevented = False
        self.propagation_stopped = False

    def prevent_default(self):
        self.default_prevented = True

    def stop_propagation(self):
        self.propagation_stopped = True

    def __repr__(self):
        return f"KeyEvent(key={self.key!r}, in_text_input={self.in_text_input})"


@dataclass(frozen=True)
class ScanResult:
    """Outcome of one flush"""

    raw_text: str
    is_valid: bool
    reason: Optional[str] = None
    error_kind: Optional[str] = None


@dataclass
class DecoderConfig:
    min_length: int = DEFAULT_MIN_LENGTH
    max_length: int = DEFAULT_MAX_LENGTH
    # Quiet period after the last key before the buffer is flushed
    timeout_ms: float = 100
    # Keys closer together than this are considered machine-typed
    scanner_interval_ms: float = 50
    capture_keys: bool = True
    prevent_default: bool = True
    stop_propagation: bool = True
    accept_pattern: str = r"[a-zA-Z0-9\-_]"

    @classmethod
    def from_dict(cls, values: Optional[Dict[str, Any]]) -> "DecoderConfig":
        """Build a config from a settings section, ignoring unknown keys"""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (values or {}).items() if k in known})


class ScanDecoder:
    """
    Turns a stream of KeyEvents into validated barcode strings.

    States are IDLE (empty buffer) and ACCUMULATING (buffer non-empty). A
    flush always returns to IDLE. No exception escapes to the key source;
    every outcome goes to on_scan or on_error.
    """

    def __init__(
        self,
        on_scan: Callable[[str], Any],
        on_error: Optional[Callable[[str], Any]] = None,
        config: Optional[DecoderConfig] = None,
        loop=None,
    ):
        """
        Args:
            on_scan: Called once with each accepted barcode
            on_error: Called once with a message for each rejected flush
            config: Decoder thresholds and capture behaviour
            loop: Event loop used for the debounce timer and the clock
                  (defaults to the running asyncio loop)
        """
        self.on_scan = on_scan
        self.on_error = on_error
        self.config = config or DecoderConfig()
        self._accept = re.compile(self.config.accept_pattern)
        self._loop = loop

        self._buffer: List[str] = []
        self._scanning = False
        self._last_key_ms: Optional[float] = None
        self._timer = None

        self._unsubscribe: Optional[Callable[[], Any]] = None
        self._inert = False

    # Read-only status snapshots for display

    @property
    def is_scanning(self) -> bool:
        return self._scanning

    @property
    def current_buffer(self) -> str:
        return "".join(self._buffer)

    @property
    def state(self) -> str:
        return ACCUMULATING if self._scanning else IDLE

    @property
    def is_attached(self) -> bool:
        return self._unsubscribe is not None

    @property
    def is_inert(self) -> bool:
        return self._inert

    def _get_loop(self):
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def attach(self, source) -> bool:
        """
        Subscribe to a key source

        Args:
            source: Object exposing add_listener(callback) -> unsubscribe

        Returns:
            bool: True if subscribed; False if the decoder went inert
        """
        if self._unsubscribe is not None:
            self.detach()

        try:
            self._get_loop()
            self._unsubscribe = source.add_listener(self.handle_key)
        except Exception as e:
            logger.error(f"❌ Scanner listener could not be installed: {e}")
            self._go_inert()
            return False

        self._inert = False
        logger.info("✅ Scanner listener attached")
        return True

    def detach(self):
        """Remove the key listener and drop any pending scan"""
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            try:
                unsubscribe()
            except Exception as e:
                logger.warning(f"⚠️ Scanner listener removal failed: {e}")
        self.reset_buffer()

    def _go_inert(self):
        self._inert = True
        self.reset_buffer()
        self._emit(self.on_error, LISTENER_INIT_ERROR)

    def handle_key(self, event: KeyEvent) -> bool:
        """
        Feed one key press to the decoder

        Returns:
            bool: True if the key was consumed by the decoder
        """
        if self._inert:
            return False

        cfg = self.config
        if not cfg.capture_keys and event.in_text_input:
            return False

        try:
            now_ms = self._get_loop().time() * 1000
        except RuntimeError as e:
            logger.error(f"❌ No event loop available for scanner timing: {e}")
            self._go_inert()
            return False

        fast = self._last_key_ms is not None and (now_ms - self._last_key_ms) < cfg.scanner_interval_ms
        from_scanner = fast or self._scanning

        if event.key == "Enter":
            if self._scanning and self._buffer:
                if cfg.prevent_default:
                    event.prevent_default()
                if cfg.stop_propagation:
                    event.stop_propagation()
                self.flush()
                return True
            return False

        if len(event.key) != 1 or not self._accept.fullmatch(event.key):
            return False

        # Slow typing into a text field belongs to the field
        if event.in_text_input and not from_scanner:
            return False

        if cfg.capture_keys:
            if cfg.prevent_default:
                event.prevent_default()
            if cfg.stop_propagation:
                event.stop_propagation()

        self._scanning = True
        self._buffer.append(event.key)
        self._last_key_ms = now_ms
        self._restart_timer()
        return True

    def _restart_timer(self):
        self._cancel_timer()
        self._timer = self._get_loop().call_later(self.config.timeout_ms / 1000.0, self._on_timeout)

    def _cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timeout(self):
        self._timer = None
        if self._buffer:
            self.flush()

    def flush(self) -> Optional[ScanResult]:
        """
        Finalize the buffer into a scan or an error and clear it

        Returns:
            ScanResult or None when the buffer was empty (nothing is emitted)
        """
        text = "".join(self._buffer).strip()
        self.reset_buffer()

        if not text:
            return None

        try:
            barcode = validate_barcode(text, self.config.min_length, self.config.max_length)
        except BarcodeValidationError as e:
            result = ScanResult(raw_text=text, is_valid=False, reason=str(e), error_kind=e.kind)
            logger.warning(f"⚠️ Scan rejected ({e.kind}): {e}")
            self._emit(self.on_error, result.reason)
            return result

        logger.info(f"✅ Barcode scanned: {barcode}")
        self._emit(self.on_scan, barcode)
        return ScanResult(raw_text=barcode, is_valid=True)

    def reset_buffer(self):
        """Drop the current buffer without emitting anything"""
        self._buffer = []
        self._scanning = False
        self._cancel_timer()

    @staticmethod
    def _emit(callback, value):
        if callback is None:
            return
        try:
            callback(value)
        except Exception as e:
            logger.error(f"❌ Scanner callback error: {e}", exc_info=True)
