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


import pytest
from lfchain.tool import NoTagData, TagTool, ToolState
from lfchain.worker import MemoryTagWorker, ReaderBusy


def test_read():
    worker = MemoryTagWorker(bytes.fromhex("1122334455667788"))
    tool = TagTool(worker)
    tool.read()
    assert tool.wait(1)
    assert tool.tag_found
    assert tool.tag_data == bytes.fromhex("1122334455667788")
    assert tool.status == "Tag read successfully!"
    assert tool.state == ToolState.IDLE


def test_short_payload_is_padded():
    tool = TagTool(MemoryTagWorker(bytes.fromhex("0102030405")))
    tool.read()
    assert tool.tag_data == bytes.fromhex("0102030405000000")


def test_write_requires_read():
    tool = TagTool(MemoryTagWorker(bytes(8)))
    with pytest.raises(NoTagData):
        tool.write()
    with pytest.raises(NoTagData):
        tool.emulate()


def test_write_applies_offset():
    worker = MemoryTagWorker(bytes.fromhex("ff00000000000000"))
    tool = TagTool(worker)
    tool.read()
    tool.write()
    assert tool.wait(1)
    assert tool.write_ok
    assert bytes(worker.tag) == bytes.fromhex("0001000000000000")
    tool.offset.value = 0x10
    tool.read()
    tool.write()
    assert bytes(worker.tag) == bytes.fromhex("1001000000000000")


def test_write_failure():
    worker = MemoryTagWorker(bytes(8))
    tool = TagTool(worker)
    tool.read()
    worker.fail_next_writes(1)
    tool.write()
    assert tool.wait(1)
    assert tool.write_ok is False
    assert tool.status.startswith("Write failed")
    assert bytes(worker.tag) == bytes(8)
    assert tool.state == ToolState.IDLE


def test_emulate():
    worker = MemoryTagWorker(bytes.fromhex("0102030405060708"))
    tool = TagTool(worker)
    tool.read()
    tool.emulate()
    assert tool.state == ToolState.EMULATING
    assert worker.emulating == bytes.fromhex("0102030405060708")
    with pytest.raises(RuntimeError):
        tool.read()
    tool.stop()
    assert tool.state == ToolState.IDLE
    assert worker.emulating is None


def test_card_removed():
    worker = MemoryTagWorker()
    tool = TagTool(worker)
    tool.read()
    assert not tool.wait(0)
    assert tool.state == ToolState.READING
    worker.remove()
    assert tool.wait(0)
    assert not tool.tag_found
    assert tool.status == "Card removed"


def test_worker_busy():
    worker = MemoryTagWorker(bytes(8))
    worker.emulate_start(bytes(8))
    tool = TagTool(worker)
    with pytest.raises(ReaderBusy):
        tool.read()
    assert tool.state == ToolState.IDLE
    assert tool.wait(0)
