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


import threading
import time
import pytest
import serial
from packaging.version import parse as parse_version
from lfchain.allocator import IdentifierAllocator
from lfchain.chain import HashChainGenerator
from lfchain.container import crc16_ccitt
from lfchain.protocol import ProtocolState, RollingAuthProtocol
from lfchain.serial_worker import (
    BridgeCommand,
    BridgeEvent,
    FrameDecoder,
    ProtocolError,
    SerialTagWorker,
    encode_frame,
)
from lfchain.store import CredentialStore
from lfchain.worker import HardwareFailure, ReaderBusy, TagEvent


class FakeBridge:
    """Serial port double behaving like a reader bridge."""

    def __init__(self, version=b"lfbridge-1.2", tag=None):
        self.version = version
        self.tag = tag
        self.fail_writes = False
        self.broken = False
        self.closed = False
        self.commands = []
        self.rx = bytearray()
        self.lock = threading.Lock()
        self.decoder = FrameDecoder()

    @property
    def in_waiting(self):
        with self.lock:
            return len(self.rx)

    def read(self, size=1):
        deadline = time.monotonic() + 0.05
        while True:
            with self.lock:
                if len(self.rx) > 0:
                    data = bytes(self.rx[:size])
                    del self.rx[:size]
                    return data
            if time.monotonic() > deadline:
                return b""
            time.sleep(0.001)

    def write(self, data):
        if self.broken:
            raise serial.SerialException("device disconnected")
        for code, payload in self.decoder.feed(data):
            self.commands.append(BridgeCommand(code))
            self.answer(code, payload)
        return len(data)

    def send(self, code, data=b""):
        with self.lock:
            self.rx += encode_frame(code, data)

    def answer(self, code, payload):
        if code == BridgeCommand.VERSION:
            if self.version is not None:
                self.send(BridgeEvent.VERSION, self.version)
        elif code == BridgeCommand.READ:
            if self.tag is not None:
                self.send(BridgeEvent.SENSE_START)
                self.send(BridgeEvent.DONE, self.tag)
        elif code == BridgeCommand.WRITE:
            self.send(BridgeEvent.SENSE_START)
            if self.fail_writes:
                self.send(BridgeEvent.FAILURE, b"write error")
            else:
                self.tag = payload
                self.send(BridgeEvent.ACK)

    def close(self):
        self.closed = True


class Collector:
    """Collects operation results until a terminal one is received."""

    def __init__(self):
        self.results = []
        self.done = threading.Event()

    def __call__(self, result):
        self.results.append(result)
        if result.event != TagEvent.SENSE_START:
            self.done.set()


@pytest.fixture
def bridge():
    return FakeBridge(tag=bytes.fromhex("0102030405"))


@pytest.fixture
def worker(bridge):
    worker = SerialTagWorker(ser=bridge)
    yield worker
    worker.close()


def test_encode_frame():
    assert encode_frame(0x10) == b"\xa5\x10\x00" + crc16_ccitt(b"\x10\x00").to_bytes(
        2, "big"
    )
    frame = encode_frame(0x11, b"\x01\x02")
    assert frame[:5] == b"\xa5\x11\x02\x01\x02"
    assert len(frame) == 7
    with pytest.raises(ValueError):
        encode_frame(0x11, bytes(256))


def test_decoder():
    decoder = FrameDecoder()
    stream = b"\x00\xff" + encode_frame(0x90, b"\xaa\xbb") + encode_frame(0x91)
    assert decoder.feed(stream[:5]) == []
    assert decoder.feed(stream[5:]) == [(0x90, b"\xaa\xbb"), (0x91, b"")]
    assert decoder.feed(b"") == []


def test_decoder_bad_crc():
    decoder = FrameDecoder()
    bad = bytearray(encode_frame(0x90, b"\x01"))
    bad[-1] ^= 0xFF
    with pytest.raises(ProtocolError):
        decoder.feed(bytes(bad))
    assert decoder.feed(encode_frame(0x91)) == [(0x91, b"")]


def test_version(worker, bridge):
    assert worker.version == parse_version("1.2")
    assert bridge.commands == [BridgeCommand.VERSION]


def test_unsupported_firmware():
    bridge = FakeBridge(version=b"lfbridge-0.9")
    with pytest.raises(RuntimeError):
        SerialTagWorker(ser=bridge)
    assert bridge.closed


def test_wrong_board():
    with pytest.raises(RuntimeError):
        SerialTagWorker(ser=FakeBridge(version=b"other-1.0"))


def test_no_answer():
    bridge = FakeBridge(version=None)
    with pytest.raises(HardwareFailure):
        SerialTagWorker(ser=bridge, timeout=0.2)
    assert bridge.closed


def test_read(worker):
    collector = Collector()
    worker.read_async(collector)
    assert collector.done.wait(1)
    assert [r.event for r in collector.results] == [
        TagEvent.SENSE_START,
        TagEvent.READ_DONE,
    ]
    assert collector.results[-1].data == bytes.fromhex("0102030405")


def test_card_removed(worker, bridge):
    bridge.tag = None
    collector = Collector()
    worker.read_async(collector)
    bridge.send(BridgeEvent.SENSE_END)
    assert collector.done.wait(1)
    assert collector.results[-1].event == TagEvent.SENSE_END


def test_write(worker, bridge):
    collector = Collector()
    worker.write_async(b"\x09\x08\x07\x06\x05", collector)
    assert collector.done.wait(1)
    assert collector.results[-1].event == TagEvent.WRITE_OK
    assert bridge.tag == b"\x09\x08\x07\x06\x05"


def test_write_failure(worker, bridge):
    bridge.fail_writes = True
    collector = Collector()
    worker.write_async(b"\x01", collector)
    assert collector.done.wait(1)
    result = collector.results[-1]
    assert result.event == TagEvent.FAILURE
    assert result.reason == "write error"
    assert isinstance(result.error(), HardwareFailure)


def test_corrupted_frame_fails_operation(worker, bridge):
    bridge.tag = None
    collector = Collector()
    worker.read_async(collector)
    with bridge.lock:
        bridge.rx += b"\xa5\x90\x01\x00\x00\x00"
    assert collector.done.wait(1)
    assert collector.results[-1].event == TagEvent.FAILURE


def test_single_operation(worker, bridge):
    bridge.tag = None
    worker.read_async(Collector())
    with pytest.raises(ReaderBusy):
        worker.write_async(b"\x01", Collector())
    worker.stop()
    worker.emulate_start(b"\x01\x02")
    with pytest.raises(ReaderBusy):
        worker.read_async(Collector())
    worker.stop()
    assert bridge.commands == [
        BridgeCommand.VERSION,
        BridgeCommand.READ,
        BridgeCommand.STOP,
        BridgeCommand.EMULATE,
        BridgeCommand.STOP,
    ]


def test_stopped_operation_ignores_late_events(worker, bridge):
    bridge.tag = None
    stale = Collector()
    worker.read_async(stale)
    worker.stop()
    bridge.send(BridgeEvent.DONE, b"\x01\x02\x03\x04\x05")
    bridge.send(BridgeEvent.FAILURE, b"late")
    time.sleep(0.2)
    assert stale.results == []
    bridge.tag = bytes.fromhex("0a0b0c0d0e")
    collector = Collector()
    worker.read_async(collector)
    assert collector.done.wait(1)
    assert collector.results[-1].data == bytes.fromhex("0a0b0c0d0e")
    assert stale.results == []


def test_serial_error(worker, bridge):
    bridge.broken = True
    with pytest.raises(HardwareFailure):
        worker.read_async(Collector())
    bridge.broken = False
    collector = Collector()
    worker.read_async(collector)
    assert collector.done.wait(1)


def test_rolling_credential_over_bridge(tmp_path, worker, bridge):
    protocol = RollingAuthProtocol(
        worker,
        IdentifierAllocator(tmp_path),
        CredentialStore(tmp_path),
        generator=HashChainGenerator(seed_source=lambda: b"bridge"),
    )
    protocol.create()
    assert protocol.run(timeout=2).state == ProtocolState.CREATE_SUCCEEDED
    protocol.acknowledge()
    protocol.verify()
    assert protocol.run(timeout=2).state == ProtocolState.ADVANCE_SUCCEEDED
    record = protocol.store.read(1)
    assert record.current_index == 1
    assert bridge.tag == record.tag_payload()
