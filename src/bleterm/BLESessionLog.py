# MIT License
#
# Copyright (c) 2025 bleterm Contributors
#
# Permission is hereby granted, free of charge, to any person obtaining a copy
# of this software and associated documentation files (the "Software"), to deal
# in the Software without restriction, including without limitation the rights
# to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
# copies of the Software, and to permit persons to whom the Software is
# furnished to do so, subject to the following conditions:
#
# The above copyright notice and this permission notice shall be included in
# all copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
# IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
# FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
# AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
# LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
# OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
# SOFTWARE.

"""
User-facing session log.

An append-only list of human readable lines, cleared when a new scan
starts. Lines produced by radio events carry a timestamp prefix with nine
fractional digits, e.g.

    [2024-06-04 13:37:00.123456789] Connected to Thermometer

The nanosecond field comes from time.time_ns(); its resolution exceeds the
clock's real accuracy and only serves to keep lines ordered when reading
them back. Lines produced by local validation are appended as-is.
"""

import time
from typing import Callable, Iterator, List, Optional, Tuple

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def format_timestamp(timestamp_ns: Optional[int] = None) -> str:
    """Format epoch nanoseconds as local "yyyy-MM-dd HH:mm:ss.SSSSSSSSS"."""
    if timestamp_ns is None:
        timestamp_ns = time.time_ns()
    seconds, nanoseconds = divmod(timestamp_ns, 1_000_000_000)
    return f"{time.strftime(TIMESTAMP_FORMAT, time.localtime(seconds))}.{nanoseconds:09d}"


class SessionLog:
    def __init__(self, clock: Callable[[], int] = time.time_ns):
        """
        Args:
            clock: Source of epoch nanoseconds for timestamped lines
        """
        self._clock = clock
        self._messages: List[str] = []

    def append(self, message: str) -> str:
        self._messages.append(message)
        return message

    def append_event(self, message: str) -> str:
        """Append message prefixed with the current timestamp."""
        return self.append(f"[{format_timestamp(self._clock())}] {message}")

    def clear(self):
        self._messages.clear()

    @property
    def messages(self) -> Tuple[str, ...]:
        return tuple(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[str]:
        return iter(tuple(self._messages))
