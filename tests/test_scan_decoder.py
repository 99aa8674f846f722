import os
import sys
import unittest
from unittest.mock import MagicMock

# Add src to path
sys.path.append(os.path.join(os.path.dirname(__file__), '..', 'src'))

from scanner.decoder import (
    ACCUMULATING,
    IDLE,
    LISTENER_INIT_ERROR,
    DecoderConfig,
    KeyEvent,
    ScanDecoder,
)
from scanner.key_sources import KeyEventBus


class FakeTimer:
    def __init__(self, when, callback, args):
        self.when = when
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeLoop:
    """Manually advanced clock with call_later, enough for the decoder's debounce"""

    def __init__(self):
        self.now = 1000.0
        self.timers = []

    def time(self):
        return self.now

    def call_later(self, delay, callback, *args):
        timer = FakeTimer(self.now + delay, callback, args)
        self.timers.append(timer)
        return timer

    def pending(self):
        return [t for t in self.timers if not t.cancelled]

    def advance(self, seconds):
        target = self.now + seconds
        while True:
            due = sorted((t for t in self.pending() if t.when <= target), key=lambda t: t.when)
            if not due:
                break
            timer = due[0]
            self.timers.remove(timer)
            self.now = timer.when
            timer.callback(*timer.args)
        self.now = target


class ScanDecoderTestBase(unittest.TestCase):

    def setUp(self):
        self.loop = FakeLoop()
        self.on_scan = MagicMock()
        self.on_error = MagicMock()
        self.decoder = self.make_decoder()

    def make_decoder(self, **config):
        return ScanDecoder(self.on_scan, self.on_error, DecoderConfig(**config), loop=self.loop)

    def type_keys(self, text, interval=0.01, in_text_input=False, decoder=None):
        decoder = decoder or self.decoder
        events = []
        for key in text:
            event = KeyEvent(key, in_text_input=in_text_input)
            decoder.handle_key(event)
            events.append(event)
            self.loop.advance(interval)
        return events

    def press_enter(self, decoder=None):
        event = KeyEvent("Enter")
        (decoder or self.decoder).handle_key(event)
        return event

    def emitted(self):
        return self.on_scan.call_count + self.on_error.call_count


class TestFlush(ScanDecoderTestBase):

    def test_empty_flush_emits_nothing(self):
        self.assertIsNone(self.decoder.flush())
        self.assertEqual(self.emitted(), 0)

    def test_whitespace_only_flush_emits_nothing(self):
        self.decoder._buffer = [" ", " "]
        self.decoder._scanning = True
        self.assertIsNone(self.decoder.flush())
        self.assertEqual(self.emitted(), 0)
        self.assertEqual(self.decoder.state, IDLE)

    def test_non_empty_flush_emits_exactly_once(self):
        for text in ("12345678", "123", "12a45678"):
            self.on_scan.reset_mock()
            self.on_error.reset_mock()
            self.type_keys(text)
            result = self.decoder.flush()
            self.assertIsNotNone(result)
            self.assertEqual(self.emitted(), 1, text)
            self.assertEqual(self.decoder.current_buffer, "")
            self.assertFalse(self.decoder.is_scanning)

    def test_flush_cancels_pending_timer(self):
        self.type_keys("12345678")
        self.decoder.flush()
        self.loop.advance(1.0)
        self.assertEqual(self.emitted(), 1)
        self.assertEqual(self.loop.pending(), [])


class TestValidationBoundaries(ScanDecoderTestBase):

    def scan(self, text):
        self.type_keys(text)
        return self.press_enter()

    def test_seven_digits_is_length_error(self):
        self.scan("1234567")
        self.on_scan.assert_not_called()
        self.on_error.assert_called_once_with("Barcode length invalid: 1234567 (7 chars)")

    def test_eight_and_twenty_digits_succeed(self):
        self.scan("1" * 8)
        self.scan("2" * 20)
        self.assertEqual([c.args[0] for c in self.on_scan.call_args_list], ["1" * 8, "2" * 20])
        self.on_error.assert_not_called()

    def test_twenty_one_digits_is_length_error(self):
        self.scan("3" * 21)
        self.on_scan.assert_not_called()
        self.on_error.assert_called_once_with(f"Barcode length invalid: {'3' * 21} (21 chars)")

    def test_non_digit_of_valid_length_is_format_error(self):
        self.scan("12a45678")
        self.on_scan.assert_not_called()
        self.on_error.assert_called_once_with("Invalid barcode format: 12a45678")

    def test_short_non_digit_reports_length_first(self):
        self.type_keys("ab-")
        result = self.decoder.flush()
        self.assertEqual(result.error_kind, "length")
        self.on_error.assert_called_once_with("Barcode length invalid: ab- (3 chars)")

    def test_custom_bounds(self):
        decoder = self.make_decoder(min_length=4, max_length=6)
        self.type_keys("1234", decoder=decoder)
        self.press_enter(decoder)
        self.on_scan.assert_called_once_with("1234")


class TestTiming(ScanDecoderTestBase):

    def test_debounce_flushes_after_silence(self):
        self.type_keys("123", interval=0.05)
        self.assertEqual(self.decoder.state, ACCUMULATING)
        self.assertEqual(self.decoder.current_buffer, "123")

        self.loop.advance(0.2)

        self.on_error.assert_called_once_with("Barcode length invalid: 123 (3 chars)")
        self.assertEqual(self.decoder.state, IDLE)

    def test_each_key_restarts_the_timer(self):
        # Gaps of 90ms never let a 100ms timer expire
        for key in "12345678":
            self.decoder.handle_key(KeyEvent(key))
            self.loop.advance(0.09)
        self.assertEqual(self.emitted(), 0)

        self.loop.advance(0.05)
        self.on_scan.assert_called_once_with("12345678")

    def test_terminator_flushes_without_waiting(self):
        self.type_keys("10000000", interval=0)
        event = self.press_enter()

        self.on_scan.assert_called_once_with("10000000")
        self.assertTrue(event.default_prevented)
        self.assertTrue(event.propagation_stopped)
        self.loop.advance(1.0)
        self.assertEqual(self.emitted(), 1)

    def test_enter_without_scan_is_ignored(self):
        event = self.press_enter()
        self.assertFalse(event.default_prevented)
        self.assertEqual(self.emitted(), 0)

    def test_non_qualifying_keys_never_reach_buffer(self):
        for key in ("Shift", "+", ".", "Tab", " "):
            self.assertFalse(self.decoder.handle_key(KeyEvent(key)))
        self.assertEqual(self.decoder.current_buffer, "")
        self.assertEqual(self.decoder.state, IDLE)
        self.assertEqual(self.loop.pending(), [])


class TestResetBuffer(ScanDecoderTestBase):

    def test_reset_mid_scan_discards_first_sequence(self):
        self.type_keys("99999")
        self.decoder.reset_buffer()
        self.assertEqual(self.decoder.state, IDLE)

        self.type_keys("1234567890")
        self.press_enter()
        self.loop.advance(1.0)

        self.on_scan.assert_called_once_with("1234567890")
        self.on_error.assert_not_called()

    def test_reset_cancels_timer(self):
        self.type_keys("123")
        self.decoder.reset_buffer()
        self.loop.advance(1.0)
        self.assertEqual(self.emitted(), 0)


class TestFocusAndCapture(ScanDecoderTestBase):

    def test_text_input_ignored_without_capture(self):
        decoder = self.make_decoder(capture_keys=False)
        events = self.type_keys("12345678", interval=0.001, in_text_input=True, decoder=decoder)
        self.press_enter(decoder)

        self.assertEqual(self.emitted(), 0)
        self.assertFalse(any(e.default_prevented for e in events))

    def test_no_capture_outside_text_input_does_not_prevent_default(self):
        decoder = self.make_decoder(capture_keys=False)
        events = self.type_keys("12345678", decoder=decoder)
        self.press_enter(decoder)

        self.on_scan.assert_called_once_with("12345678")
        self.assertFalse(any(e.default_prevented for e in events))

    def test_capture_prevents_default_and_propagation(self):
        events = self.type_keys("12345678")
        self.assertTrue(all(e.default_prevented and e.propagation_stopped for e in events))

    def test_capture_respects_flags(self):
        decoder = self.make_decoder(prevent_default=False, stop_propagation=True)
        events = self.type_keys("1234", decoder=decoder)
        self.assertFalse(any(e.default_prevented for e in events))
        self.assertTrue(all(e.propagation_stopped for e in events))

    def test_slow_key_in_text_input_is_left_to_the_field(self):
        event = KeyEvent("5", in_text_input=True)
        self.assertFalse(self.decoder.handle_key(event))
        self.assertFalse(event.default_prevented)
        self.assertEqual(self.decoder.state, IDLE)

    def test_scan_in_progress_continues_into_text_input(self):
        self.type_keys("1234")
        self.type_keys("5678", in_text_input=True)
        self.press_enter()
        self.on_scan.assert_called_once_with("12345678")


class TestAttach(ScanDecoderTestBase):

    def test_attach_to_bus_and_scan(self):
        bus = KeyEventBus()
        self.assertTrue(self.decoder.attach(bus))
        self.assertTrue(self.decoder.is_attached)

        for key in "4006381333931":
            bus.publish(key)
            self.loop.advance(0.005)
        event = bus.publish("Enter")

        self.on_scan.assert_called_once_with("4006381333931")
        self.assertTrue(event.default_prevented)

    def test_detach_unsubscribes_and_clears_buffer(self):
        bus = KeyEventBus()
        self.decoder.attach(bus)
        bus.publish("1")
        self.decoder.detach()

        self.assertEqual(bus.listener_count, 0)
        self.assertEqual(self.decoder.current_buffer, "")
        self.assertEqual(self.loop.pending(), [])

    def test_attach_failure_emits_single_error_and_goes_inert(self):
        source = MagicMock()
        source.add_listener.side_effect = RuntimeError("no keyboard")

        self.assertFalse(self.decoder.attach(source))

        self.on_error.assert_called_once_with(LISTENER_INIT_ERROR)
        self.assertTrue(self.decoder.is_inert)
        self.assertFalse(self.decoder.handle_key(KeyEvent("1")))
        self.assertEqual(self.on_error.call_count, 1)

    def test_detach_failure_is_not_raised(self):
        source = MagicMock()
        source.add_listener.return_value = MagicMock(side_effect=RuntimeError("gone"))
        self.decoder.attach(source)
        self.decoder.detach()
        self.assertFalse(self.decoder.is_attached)

    def test_callback_exception_is_swallowed(self):
        self.on_scan.side_effect = ValueError("ui crashed")
        self.type_keys("12345678")
        self.press_enter()
        self.on_scan.assert_called_once_with("12345678")
        self.assertEqual(self.decoder.state, IDLE)


class TestDecoderConfig(unittest.TestCase):

    def test_defaults(self):
        config = DecoderConfig()
        self.assertEqual((config.min_length, config.max_length, config.timeout_ms), (8, 20, 100))
        self.assertTrue(config.capture_keys)

    def test_from_dict_ignores_unknown_keys(self):
        config = DecoderConfig.from_dict({"min_length": 10, "device_paths": ["/dev/input/event3"]})
        self.assertEqual(config.min_length, 10)
        self.assertEqual(config.max_length, 20)


if __name__ == '__main__':
    unittest.main()
