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


PAYLOAD_SIZE = 8
DEFAULT_OFFSET = 1


def apply_offset(payload: bytes, offset: int) -> bytes:
    """
    Adds a single byte offset to an 8-byte tag payload, byte 0 being the least
    significant byte. Carry is propagated up to byte 7, and any carry out of
    byte 7 is lost.

    :param payload: 8 bytes payload.
    :param offset: Value added to the payload, in range 0-255.
    :return: Modified payload.
    """
    if len(payload) != PAYLOAD_SIZE:
        raise ValueError(f"Payload must be {PAYLOAD_SIZE} bytes")
    if offset not in range(0x100):
        raise ValueError("Offset out of range")
    result = bytearray(payload)
    carry = offset
    for i in range(PAYLOAD_SIZE):
        value = result[i] + carry
        result[i] = value & 0xFF
        carry = value >> 8
    return bytes(result)


def remove_offset(payload: bytes, offset: int) -> bytes:
    """
    Subtracts a single byte offset from an 8-byte tag payload, propagating
    borrow up to byte 7. This reverts :func:`apply_offset`.

    :param payload: 8 bytes payload.
    :param offset: Value subtracted from the payload, in range 0-255.
    :return: Original payload.
    """
    if len(payload) != PAYLOAD_SIZE:
        raise ValueError(f"Payload must be {PAYLOAD_SIZE} bytes")
    if offset not in range(0x100):
        raise ValueError("Offset out of range")
    result = bytearray(payload)
    borrow = offset
    for i in range(PAYLOAD_SIZE):
        value = result[i] - borrow
        result[i] = value & 0xFF
        borrow = 1 if value < 0 else 0
    return bytes(result)


class OffsetCipher:
    """
    Add-with-carry transform used to rewrite generic tag payloads. This is not
    a cryptographic cipher, only a reversible obfuscation.
    """

    @staticmethod
    def apply(payload: bytes, offset: int) -> bytes:
        return apply_offset(payload, offset)

    @staticmethod
    def revert(payload: bytes, offset: int) -> bytes:
        return remove_offset(payload, offset)


class OffsetSetting:
    """User adjustable offset. Wraps around from 0 to 255 and vice versa."""

    def __init__(self, value: int = DEFAULT_OFFSET):
        self.value = value

    @property
    def value(self) -> int:
        """Current offset, in range 0-255."""
        return self.__value

    @value.setter
    def value(self, value: int):
        if value not in range(0x100):
            raise ValueError("Offset out of range")
        self.__value = value

    def increment(self) -> int:
        self.__value = (self.__value + 1) % 0x100
        return self.__value

    def decrement(self) -> int:
        self.__value = (self.__value - 1) % 0x100
        return self.__value

    def __int__(self):
        return self.__value
