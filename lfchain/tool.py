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


from enum import Enum
from typing import Optional
import threading
from . import LFChainError
from .offset import OffsetSetting, apply_offset, PAYLOAD_SIZE, DEFAULT_OFFSET
from .worker import TagEvent, TagResult, TagWorker


class NoTagData(LFChainError):
    """Thrown when writing or emulating before any tag has been read."""

    def __init__(self):
        super().__init__("No tag data, read a tag first")


class ToolState(Enum):
    IDLE = 0
    READING = 1
    WRITING = 2
    EMULATING = 3


class TagTool:
    """
    Generic tag manipulation: read a tag, write back its payload modified
    with an offset, or emulate it.

    Payloads are 8 bytes long. Shorter payloads read from a tag are zero
    padded, longer payloads are truncated.
    """

    def __init__(self, worker: TagWorker, offset: int = DEFAULT_OFFSET):
        """
        :param worker: Tag reader/writer.
        :param offset: Offset added to the payload when writing.
        """
        self.worker = worker
        self.offset = OffsetSetting(offset)
        self.state = ToolState.IDLE
        self.tag_data: Optional[bytes] = None
        self.status = ""
        # Result of the last write, None while writing.
        self.write_ok: Optional[bool] = None
        self.__done = threading.Event()
        self.__done.set()

    @property
    def tag_found(self) -> bool:
        return self.tag_data is not None

    def read(self):
        """Starts reading a tag. Previously read data is discarded."""
        self.__begin(ToolState.READING)
        self.tag_data = None
        self.status = "Starting field detection..."
        self.__request(self.worker.read_async, self.__on_read)

    def write(self):
        """
        Starts writing the last read payload, with the offset applied.

        :raises NoTagData: If no tag has been read.
        """
        if self.tag_data is None:
            raise NoTagData()
        data = apply_offset(self.tag_data, int(self.offset))
        self.__begin(ToolState.WRITING)
        self.write_ok = None
        self.status = "Writing..."
        self.__request(self.worker.write_async, data, self.__on_write)

    def emulate(self):
        """
        Starts emulating the last read payload. Emulation runs until
        :meth:`stop` is called.

        :raises NoTagData: If no tag has been read.
        """
        if self.tag_data is None:
            raise NoTagData()
        self.__begin(ToolState.EMULATING)
        self.status = "Emulating tag"
        self.__request(self.worker.emulate_start, self.tag_data)

    def stop(self):
        """Stops the running operation or emulation."""
        self.worker.stop()
        self.state = ToolState.IDLE
        self.__done.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Waits for the running read or write to finish.

        :return: False if the timeout expired.
        """
        return self.__done.wait(timeout)

    def __begin(self, state: ToolState):
        if self.state != ToolState.IDLE:
            raise RuntimeError(f"Cannot start while in state {self.state.name}")
        self.state = state
        if state != ToolState.EMULATING:
            self.__done.clear()

    def __request(self, method, *args):
        try:
            method(*args)
        except Exception:
            self.state = ToolState.IDLE
            self.__done.set()
            raise

    def __on_read(self, result: TagResult):
        if result.event == TagEvent.READ_DONE:
            data = bytes(result.data[:PAYLOAD_SIZE])
            self.tag_data = data + bytes(PAYLOAD_SIZE - len(data))
            self.status = "Tag read successfully!"
        elif result.event == TagEvent.SENSE_START:
            self.status = "Card detected, reading..."
            return
        elif result.event == TagEvent.SENSE_END:
            self.status = "Card removed"
        else:
            self.status = f"Read failed: {result.reason}"
        self.state = ToolState.IDLE
        self.__done.set()

    def __on_write(self, result: TagResult):
        if result.event == TagEvent.SENSE_START:
            return
        self.write_ok = result.event == TagEvent.WRITE_OK
        if self.write_ok:
            self.status = "Tag written successfully!"
        else:
            self.status = f"Write failed: {result.error()}"
        self.state = ToolState.IDLE
        self.__done.set()
