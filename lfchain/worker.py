# This file is part of lfchain
#
# lfchain is free software: you can redistribute it and/or modify
# it under the terms of the GNU Lesser General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Lesser General Public License for more details.
#
# You should have received a copy of the GNU Lesser General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.
#
#
# Copyright 2026 lfchain contributors


from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, List, Optional
import time
import colorama
from . import LFChainError


class HardwareFailure(LFChainError):
    """Thrown when the reader reports a failed tag operation."""

    def __init__(self, reason: str = "tag operation failed"):
        super().__init__(reason)


class CardRemoved(LFChainError):
    """Thrown when the card leaves the field before the operation completed."""

    def __init__(self):
        super().__init__("Card removed")


class ReaderBusy(LFChainError):
    """Thrown when an operation is requested while another one is running."""

    def __init__(self):
        super().__init__("An operation is already running")


class TagEvent(Enum):
    """Possible notifications of an asynchronous tag operation."""

    READ_DONE = 0
    WRITE_OK = 1
    SENSE_START = 2
    SENSE_END = 3
    FAILURE = 4


class TagResult:
    """Notification delivered to the callback of a tag operation."""

    def __init__(self, event: TagEvent, data: Optional[bytes] = None, reason: str = ""):
        """
        :param event: Notification type.
        :param data: Bytes read from the card, for READ_DONE.
        :param reason: Failure description, for FAILURE.
        """
        self.event = event
        self.data = data
        self.reason = reason

    def error(self) -> Optional[LFChainError]:
        """
        :return: The error corresponding to this notification, or None if it
            does not terminate the operation with a failure.
        """
        if self.event == TagEvent.SENSE_END:
            return CardRemoved()
        if self.event == TagEvent.FAILURE:
            return HardwareFailure(self.reason or "tag operation failed")
        return None

    def __repr__(self):
        data = "" if self.data is None else f", {self.data.hex()}"
        return f"TagResult({self.event.name}{data})"


TagCallback = Callable[[TagResult], None]


class TagWorker(ABC):
    """
    Asynchronous access to low-frequency tags. Each request returns
    immediately, and the given callback is called later, possibly from
    another thread, with the operation results. Only one operation may be
    running at a time.
    """

    def __init__(self):
        self.verbose = False
        self.log_t_start = None

    @abstractmethod
    def read_async(self, on_result: TagCallback):
        """
        Starts reading a tag. The callback receives SENSE_START when a card
        enters the field, then READ_DONE with the card payload, or SENSE_END
        if the card leaves the field before the read completed.
        """

    @abstractmethod
    def write_async(self, payload: bytes, on_result: TagCallback):
        """
        Starts writing a payload to a tag. The callback receives WRITE_OK or
        FAILURE.
        """

    @abstractmethod
    def emulate_start(self, payload: bytes):
        """Starts emulating a tag holding the given payload."""

    @abstractmethod
    def stop(self):
        """Aborts the running operation or emulation. No callback is called."""

    def log(self, rw: bool, what: str, data: bytes = b""):
        """
        Print log line in standard output, if verbose is enabled.

        :param rw: True if data is sent to the card, False if data comes from
            the card.
        :param what: Operation indication ("READ", "WRITE", etc.).
        :param data: Data read/written from/to the card.
        """
        if not self.verbose:
            return
        color = colorama.Fore.YELLOW if rw else colorama.Fore.CYAN
        t = time.time()
        if self.log_t_start is None:
            self.log_t_start = t
        dt = t - self.log_t_start
        rw_str = {False: "←", True: "→"}[rw]
        print(
            f"{color}{dt * 1000.0:>9.3f} ms │ Reader {rw_str} Tag │ {what:<7} │ "
            f"{data.hex()}{colorama.Fore.RESET}"
        )


class MemoryTagWorker(TagWorker):
    """
    Simulated reader holding at most one card in its field. Used for tests,
    examples and dry runs of the command line tool.

    Requests complete as soon as a card is present. When no card is present,
    the request stays pending until :meth:`place` is called.
    """

    def __init__(self, tag: Optional[bytes] = None):
        super().__init__()
        self.tag: Optional[bytearray] = None if tag is None else bytearray(tag)
        self.emulating: Optional[bytes] = None
        # Payloads of all write requests, including failed ones.
        self.writes: List[bytes] = []
        self.__failing_writes = 0
        self.__pending = None

    @property
    def busy(self) -> bool:
        return self.__pending is not None

    def fail_next_writes(self, count: int = 1):
        """Make the next `count` write requests fail."""
        self.__failing_writes = count

    def place(self, tag: bytes):
        """Put a card holding `tag` in the field, and serve a pending request."""
        self.tag = bytearray(tag)
        if self.__pending is not None:
            self.__serve()

    def remove(self):
        """Take the card away from the field."""
        self.tag = None
        pending, self.__pending = self.__pending, None
        if pending is None:
            return
        kind, _, on_result = pending
        if kind == "read":
            on_result(TagResult(TagEvent.SENSE_END))
        else:
            on_result(TagResult(TagEvent.FAILURE, reason="card removed"))

    def read_async(self, on_result: TagCallback):
        self.__start(("read", None, on_result))

    def write_async(self, payload: bytes, on_result: TagCallback):
        self.__start(("write", bytes(payload), on_result))

    def emulate_start(self, payload: bytes):
        if self.__pending is not None:
            raise ReaderBusy()
        self.log(True, "EMULATE", payload)
        self.emulating = bytes(payload)

    def stop(self):
        self.__pending = None
        self.emulating = None

    def __start(self, request):
        if self.__pending is not None or self.emulating is not None:
            raise ReaderBusy()
        self.__pending = request
        if self.tag is not None:
            self.__serve()

    def __serve(self):
        kind, payload, on_result = self.__pending
        self.__pending = None
        on_result(TagResult(TagEvent.SENSE_START))
        if kind == "read":
            data = bytes(self.tag)
            self.log(False, "READ", data)
            on_result(TagResult(TagEvent.READ_DONE, data))
            return
        self.writes.append(payload)
        self.log(True, "WRITE", payload)
        if self.__failing_writes > 0:
            self.__failing_writes -= 1
            on_result(TagResult(TagEvent.FAILURE, reason="write verification failed"))
            return
        self.tag = bytearray(payload)
        on_result(TagResult(TagEvent.WRITE_OK))
