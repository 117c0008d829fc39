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


import os
from pathlib import Path
from typing import Dict, Union
import crcmod
from packaging.version import parse as parse_version
from . import LFChainError, StorageFault


FORMAT_VERSION = parse_version("1")

crc16_ccitt = crcmod.mkCrcFun(0x11021, 0xFFFF, rev=False)


class ContainerMissing(LFChainError):
    """Thrown when opening a container which does not exist."""

    def __init__(self, path):
        super().__init__(f"No container at {path}")
        self.path = path


class ContainerExists(LFChainError):
    """Thrown when creating a container which already exists."""

    def __init__(self, path):
        super().__init__(f"Container {path} already exists")
        self.path = path


class ContainerCorrupt(LFChainError):
    """Thrown when a container file cannot be parsed."""

    def __init__(self, path, reason: str):
        super().__init__(f"Corrupt container {path}: {reason}")
        self.path = path
        self.reason = reason


def format_hex(data: bytes) -> str:
    return " ".join(f"{b:02X}" for b in data)


class ContainerFile:
    """
    Small text container holding a single fixed-size binary field, stored as
    hexadecimal. File layout is::

        Filetype: <filetype>
        Version: 1
        <field>: 00 01 02 ...
        CRC: ABCD

    The CRC is a CRC-16/CCITT of the binary field content.
    """

    def __init__(self, path: Union[str, Path], filetype: str, field: str, size: int):
        """
        :param path: Container file path.
        :param filetype: Expected file type header.
        :param field: Name of the binary field.
        :param size: Size in bytes of the binary field.
        """
        self.path = Path(path)
        self.filetype = filetype
        self.field = field
        self.size = size

    @property
    def exists(self) -> bool:
        return self.path.is_file()

    def render(self, data: bytes) -> str:
        if len(data) != self.size:
            raise ValueError(f"{self.field} must be {self.size} bytes")
        return (
            f"Filetype: {self.filetype}\n"
            f"Version: {FORMAT_VERSION}\n"
            f"{self.field}: {format_hex(data)}\n"
            f"CRC: {crc16_ccitt(data):04X}\n"
        )

    def parse(self, text: str) -> bytes:
        """
        Decodes container text content.

        :return: Binary field content.
        :raises ContainerCorrupt: If the content is invalid.
        """
        entries: Dict[str, str] = {}
        for line in text.splitlines():
            if len(line) == 0 or line.startswith("#"):
                continue
            key, sep, value = line.partition(":")
            if not sep:
                raise ContainerCorrupt(self.path, f"invalid line '{line}'")
            entries[key.strip()] = value.strip()
        for key in ("Filetype", "Version", self.field, "CRC"):
            if key not in entries:
                raise ContainerCorrupt(self.path, f"missing {key}")
        if entries["Filetype"] != self.filetype:
            raise ContainerCorrupt(self.path, "unexpected file type")
        try:
            version = parse_version(entries["Version"])
        except ValueError as e:
            raise ContainerCorrupt(self.path, "invalid version") from e
        if version.major != FORMAT_VERSION.major:
            raise ContainerCorrupt(self.path, f"unsupported version {version}")
        try:
            data = bytes.fromhex(entries[self.field])
            crc = int(entries["CRC"], 16)
        except ValueError as e:
            raise ContainerCorrupt(self.path, "invalid hexadecimal value") from e
        if len(data) != self.size:
            raise ContainerCorrupt(
                self.path, f"{self.field} is {len(data)} bytes, expected {self.size}"
            )
        if crc16_ccitt(data) != crc:
            raise ContainerCorrupt(self.path, "CRC mismatch")
        return data

    def create(self, data: bytes):
        """
        Creates a new container.

        :raises ContainerExists: If the file already exists.
        :raises StorageFault: On I/O error.
        """
        text = self.render(data)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageFault(self.path.parent, e.strerror or str(e)) from e
        try:
            with open(self.path, "x") as f:
                f.write(text)
        except FileExistsError as e:
            raise ContainerExists(self.path) from e
        except OSError as e:
            raise StorageFault(self.path, e.strerror or str(e)) from e

    def read(self) -> bytes:
        """
        :return: Binary field of an existing container.
        :raises ContainerMissing: If the file does not exist.
        :raises ContainerCorrupt: If the content is invalid.
        :raises StorageFault: On I/O error.
        """
        try:
            with open(self.path, "r") as f:
                text = f.read()
        except FileNotFoundError as e:
            raise ContainerMissing(self.path) from e
        except UnicodeDecodeError as e:
            raise ContainerCorrupt(self.path, "not a text file") from e
        except OSError as e:
            raise StorageFault(self.path, e.strerror or str(e)) from e
        return self.parse(text)

    def update(self, data: bytes):
        """
        Replaces the binary field of an existing container. The new content is
        written in a temporary file which then replaces the container, so a
        failed update leaves the previous content untouched.

        :raises ContainerMissing: If the file does not exist.
        :raises StorageFault: On I/O error.
        """
        text = self.render(data)
        if not self.exists:
            raise ContainerMissing(self.path)
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            with open(tmp, "w") as f:
                f.write(text)
            os.replace(tmp, self.path)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise StorageFault(self.path, e.strerror or str(e)) from e

    def delete(self):
        """
        :raises ContainerMissing: If the file does not exist.
        :raises StorageFault: On I/O error.
        """
        try:
            self.path.unlink()
        except FileNotFoundError as e:
            raise ContainerMissing(self.path) from e
        except OSError as e:
            raise StorageFault(self.path, e.strerror or str(e)) from e
