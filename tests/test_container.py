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
from lfchain import StorageFault
from lfchain.container import (
    ContainerCorrupt,
    ContainerExists,
    ContainerFile,
    ContainerMissing,
    crc16_ccitt,
)


def make_container(tmp_path, size=4):
    return ContainerFile(tmp_path / "test.lfc", "lfchain test", "Data", size)


def test_crc16_ccitt():
    assert crc16_ccitt(b"123456789") == 0x29B1
    assert crc16_ccitt(b"") == 0xFFFF


def test_create_and_read(tmp_path):
    container = make_container(tmp_path)
    assert not container.exists
    container.create(b"\x01\x02\x03\x04")
    assert container.exists
    assert container.read() == b"\x01\x02\x03\x04"
    text = container.path.read_text()
    assert "Filetype: lfchain test\n" in text
    assert "Data: 01 02 03 04\n" in text


def test_create_existing(tmp_path):
    container = make_container(tmp_path)
    container.create(bytes(4))
    with pytest.raises(ContainerExists):
        container.create(b"\xff" * 4)
    assert container.read() == bytes(4)


def test_update(tmp_path):
    container = make_container(tmp_path)
    with pytest.raises(ContainerMissing):
        container.update(bytes(4))
    container.create(bytes(4))
    container.update(b"\xaa\xbb\xcc\xdd")
    assert container.read() == b"\xaa\xbb\xcc\xdd"
    assert not (tmp_path / "test.lfc.tmp").exists()


def test_read_missing(tmp_path):
    with pytest.raises(ContainerMissing):
        make_container(tmp_path).read()


def test_delete(tmp_path):
    container = make_container(tmp_path)
    container.create(bytes(4))
    container.delete()
    assert not container.exists
    with pytest.raises(ContainerMissing):
        container.delete()


def test_wrong_size(tmp_path):
    container = make_container(tmp_path)
    with pytest.raises(ValueError):
        container.create(bytes(3))


def test_corrupt_content(tmp_path):
    container = make_container(tmp_path)
    valid = container.render(b"\x01\x02\x03\x04")
    corruptions = [
        valid.replace("01 02 03 04", "01 02 03 05"),
        valid.replace("01 02 03 04", "01 02 03"),
        valid.replace("01 02 03 04", "01 02 03 zz"),
        valid.replace("Filetype: lfchain test", "Filetype: other"),
        valid.replace("Version: 1", "Version: 2"),
        valid.replace("CRC:", "CRC;"),
        "\n".join(line for line in valid.splitlines() if not line.startswith("CRC")),
    ]
    for text in corruptions:
        container.path.write_text(text)
        with pytest.raises(ContainerCorrupt):
            container.read()


def test_comments_and_blank_lines_are_ignored(tmp_path):
    container = make_container(tmp_path)
    container.path.write_text("# card data\n\n" + container.render(bytes(4)))
    assert container.read() == bytes(4)


def test_storage_fault(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("not a directory")
    container = ContainerFile(blocker / "test.lfc", "lfchain test", "Data", 4)
    with pytest.raises(StorageFault):
        container.create(bytes(4))


def test_failed_update_keeps_content(tmp_path, monkeypatch):
    container = make_container(tmp_path)
    container.create(b"\x01\x02\x03\x04")

    def failing_replace(src, dst):
        raise OSError(28, "No space left on device")

    monkeypatch.setattr("lfchain.container.os.replace", failing_replace)
    with pytest.raises(StorageFault):
        container.update(b"\x05\x06\x07\x08")
    monkeypatch.undo()
    assert container.read() == b"\x01\x02\x03\x04"
    assert sorted(p.name for p in tmp_path.iterdir()) == ["test.lfc"]
