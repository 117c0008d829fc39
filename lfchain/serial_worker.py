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


"""
Tag worker driving a serial attached low-frequency reader bridge.

Host and bridge exchange frames::

    0xA5 | code | length | data (length bytes) | CRC-16/CCITT (big endian)

The CRC covers the code, length and data bytes. The host sends commands, the
bridge answers with events. Read and write requests are answered
asynchronously: the bridge first sends SENSE_START when a card enters the
field, then DONE with the card payload for a read, ACK for a write, SENSE_END
if the card leaves the field during a read, or FAILURE.
"""

from enum import Enum
from typing import List, Optional, Tuple
import threading
import serial
import serial.tools.list_ports
from packaging.version import parse as parse_version, Version
from . import LFChainError
from .container import crc16_ccitt
from .worker import (
    HardwareFailure,
    ReaderBusy,
    TagCallback,
    TagEvent,
    TagResult,
    TagWorker,
)


SOF = 0xA5
BOARD_NAME = "lfbridge"
MIN_FIRMWARE = parse_version("1.0")


class ProtocolError(LFChainError):
    """Thrown when a malformed frame is received from the bridge."""

    def __init__(self, message):
        super().__init__(message)


class BridgeCommand(int, Enum):
    """Commands sent by the host."""

    VERSION = 0x01
    READ = 0x10
    WRITE = 0x11
    EMULATE = 0x12
    STOP = 0x13


class BridgeEvent(int, Enum):
    """Events sent by the bridge."""

    VERSION = 0x81
    DONE = 0x90
    ACK = 0x91
    SENSE_START = 0x92
    SENSE_END = 0x93
    FAILURE = 0x9F


def encode_frame(code: int, data: bytes = b"") -> bytes:
    """
    :param code: Command or event code.
    :param data: Frame data, at most 255 bytes.
    :return: Encoded frame.
    """
    if code not in range(0x100):
        raise ValueError("Invalid frame code")
    if len(data) > 255:
        raise ValueError("Data too long")
    body = bytes((code, len(data))) + data
    return bytes((SOF,)) + body + crc16_ccitt(body).to_bytes(2, "big")


class FrameDecoder:
    """
    Incremental frame decoder. Bytes received before a start of frame are
    skipped.
    """

    def __init__(self):
        self.buffer = bytearray()

    def feed(self, data: bytes) -> List[Tuple[int, bytes]]:
        """
        Appends received bytes and decodes all the complete frames.

        :return: List of (code, data) tuples.
        :raises ProtocolError: If a frame has an invalid CRC. The frame is
            dropped, and decoding can continue with the next call.
        """
        self.buffer += data
        frames = []
        while True:
            start = self.buffer.find(SOF)
            if start < 0:
                self.buffer.clear()
                return frames
            del self.buffer[:start]
            if len(self.buffer) < 3:
                return frames
            size = 3 + self.buffer[2] + 2
            if len(self.buffer) < size:
                return frames
            frame = bytes(self.buffer[:size])
            del self.buffer[:size]
            body = frame[1:-2]
            expected = crc16_ccitt(body).to_bytes(2, "big")
            if frame[-2:] != expected:
                raise ProtocolError(
                    f"Bad frame CRC: expected {expected.hex()}, got {frame[-2:].hex()}"
                )
            frames.append((body[0], body[2:]))


def find_bridge(sn: Optional[str] = None) -> str:
    """
    Scans USB serial ports for a reader bridge.

    :param sn: If set, the bridge must have this serial number.
    :return: Device path of the bridge.
    """
    possible_ports = []
    for port in serial.tools.list_ports.comports():
        if (
            (port.product is not None)
            and (port.product.lower() == BOARD_NAME)
            and ((sn is None) or (port.serial_number == sn))
        ):
            possible_ports.append(port)
    if len(possible_ports) > 1:
        raise RuntimeError(f"Multiple {BOARD_NAME} devices found! I don't know which one to use.")
    elif len(possible_ports) == 1:
        return possible_ports[0].device
    raise RuntimeError(f"No {BOARD_NAME} device found")


class SerialTagWorker(TagWorker):
    """
    :class:`TagWorker` for the serial reader bridge. A background thread
    receives the bridge events and calls the operation callbacks.
    """

    def __init__(
        self,
        dev: Optional[str] = None,
        baudrate: int = 115200,
        timeout: float = 1.0,
        ser=None,
    ):
        """
        :param dev: Serial port device path. If None, the bridge is searched
            by its USB description string.
        :param baudrate: Serial baudrate.
        :param timeout: Time to wait for the bridge version answer, in
            seconds.
        :param ser: Already opened serial port object. `dev` and `baudrate`
            are ignored when set.
        """
        super().__init__()
        if ser is None:
            if dev is None:
                dev = find_bridge()
            ser = serial.Serial(dev, baudrate, timeout=0.05)
        self.ser = ser
        self.timeout = timeout
        self.emulating = False
        self.__decoder = FrameDecoder()
        self.__lock = threading.Lock()
        # Guards the pending operation, shared with the receiving thread.
        self.__pending_lock = threading.Lock()
        self.__pending: Optional[Tuple[BridgeCommand, TagCallback]] = None
        self.__version_string: Optional[str] = None
        self.__version_received = threading.Event()
        self.__closing = threading.Event()
        self.__thread = threading.Thread(target=self.__receive_loop, daemon=True)
        self.__thread.start()
        self.__version = self.__check_version()

    @property
    def version(self) -> Version:
        """:return: Bridge firmware version."""
        return self.__version

    def __check_version(self) -> Version:
        self.__send(BridgeCommand.VERSION)
        if not self.__version_received.wait(self.timeout):
            self.close()
            raise HardwareFailure("Reader bridge did not answer")
        tokens = self.__version_string.split("-")
        if len(tokens) != 2 or tokens[0] != BOARD_NAME:
            self.close()
            raise RuntimeError(
                f"Failed to parse bridge version string '{self.__version_string}'"
            )
        version = parse_version(tokens[1])
        if version < MIN_FIRMWARE:
            self.close()
            raise RuntimeError(f"Bridge firmware version {version} not supported")
        return version

    def __send(self, command: BridgeCommand, data: bytes = b""):
        frame = encode_frame(command, data)
        self.log(True, command.name, data)
        try:
            with self.__lock:
                self.ser.write(frame)
        except serial.SerialException as e:
            raise HardwareFailure(f"Serial port error: {e}") from e

    def __request(self, command: BridgeCommand, data: bytes, on_result: TagCallback):
        with self.__pending_lock:
            if self.__pending is not None or self.emulating:
                raise ReaderBusy()
            self.__pending = (command, on_result)
        try:
            self.__send(command, data)
        except HardwareFailure:
            with self.__pending_lock:
                self.__pending = None
            raise

    def read_async(self, on_result: TagCallback):
        self.__request(BridgeCommand.READ, b"", on_result)

    def write_async(self, payload: bytes, on_result: TagCallback):
        if len(payload) == 0:
            raise ValueError("No data")
        self.__request(BridgeCommand.WRITE, bytes(payload), on_result)

    def emulate_start(self, payload: bytes):
        with self.__pending_lock:
            if self.__pending is not None:
                raise ReaderBusy()
        self.__send(BridgeCommand.EMULATE, bytes(payload))
        self.emulating = True

    def stop(self):
        with self.__pending_lock:
            self.__pending = None
            self.emulating = False
        self.__send(BridgeCommand.STOP)

    def close(self):
        """Stops the receiving thread and closes the serial port."""
        self.__closing.set()
        if self.__thread is not threading.current_thread():
            self.__thread.join()
        self.ser.close()

    def __receive_loop(self):
        while not self.__closing.is_set():
            try:
                data = self.ser.read(self.ser.in_waiting or 1)
            except serial.SerialException as e:
                self.__fail(f"Serial port error: {e}")
                return
            if len(data) == 0:
                continue
            try:
                frames = self.__decoder.feed(data)
            except ProtocolError as e:
                self.__fail(str(e))
                continue
            for code, payload in frames:
                self.__dispatch(code, payload)

    def __fail(self, reason: str):
        with self.__pending_lock:
            pending, self.__pending = self.__pending, None
        if pending is not None:
            pending[1](TagResult(TagEvent.FAILURE, reason=reason))

    def __dispatch(self, code: int, data: bytes):
        try:
            event = BridgeEvent(code)
        except ValueError:
            self.__fail(f"Unknown bridge event 0x{code:02x}")
            return
        self.log(False, event.name, data)
        if event == BridgeEvent.VERSION:
            self.__version_string = data.decode(errors="replace")
            self.__version_received.set()
            return
        with self.__pending_lock:
            pending = self.__pending
            if pending is None:
                return
            command, on_result = pending
            if event == BridgeEvent.SENSE_END and command != BridgeCommand.READ:
                return
            if event != BridgeEvent.SENSE_START:
                self.__pending = None
        if event == BridgeEvent.SENSE_START:
            on_result(TagResult(TagEvent.SENSE_START))
            return
        if command == BridgeCommand.READ and event == BridgeEvent.DONE:
            on_result(TagResult(TagEvent.READ_DONE, data))
        elif command == BridgeCommand.WRITE and event == BridgeEvent.ACK:
            on_result(TagResult(TagEvent.WRITE_OK))
        elif event == BridgeEvent.SENSE_END:
            on_result(TagResult(TagEvent.SENSE_END))
        elif event == BridgeEvent.FAILURE:
            on_result(TagResult(TagEvent.FAILURE, reason=data.decode(errors="replace")))
        else:
            on_result(
                TagResult(TagEvent.FAILURE, reason=f"Unexpected {event.name} event")
            )
