"""
Tests for the user-facing session log and its timestamp format.
"""

import re
import time

from bleterm.BLESessionLog import SessionLog, format_timestamp

TIMESTAMPED_LINE = re.compile(r"^\[\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\.\d{9}\] ")


class TestFormatTimestamp:
    def test_nine_fractional_digits(self):
        assert re.fullmatch(r"\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\.\d{9}", format_timestamp())

    def test_fraction_is_zero_padded(self):
        timestamp = format_timestamp(1_700_000_000_000_000_042)
        assert timestamp.endswith(".000000042")

    def test_seconds_part_is_local_time(self):
        seconds = 1_700_000_000
        expected = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(seconds))
        assert format_timestamp(seconds * 1_000_000_000 + 5) == f"{expected}.000000005"


class TestSessionLog:
    def test_append_is_verbatim(self):
        log = SessionLog()
        assert log.append("No connected device to disconnect.") == "No connected device to disconnect."
        assert log.messages == ("No connected device to disconnect.",)

    def test_append_event_prefixes_timestamp(self):
        log = SessionLog(clock=lambda: 1_700_000_000_123_456_789)

        line = log.append_event("Connected to Thermometer")

        assert TIMESTAMPED_LINE.match(line)
        assert line.endswith(".123456789] Connected to Thermometer")
        assert log.messages == (line,)

    def test_order_preserved(self):
        log = SessionLog()
        for i in range(5):
            log.append(f"line {i}")
        assert list(log) == [f"line {i}" for i in range(5)]
        assert len(log) == 5

    def test_clear(self):
        log = SessionLog()
        log.append("one")
        log.clear()
        assert log.messages == ()
        assert len(log) == 0

    def test_messages_is_a_copy(self):
        log = SessionLog()
        log.append("one")
        messages = log.messages
        log.append("two")
        assert messages == ("one",)
