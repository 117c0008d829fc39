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


from typing import List, Optional, Tuple
from .chain import CHAIN_LENGTH, VALUE_SIZE, value_to_bytes, value_from_bytes


RECORD_SIZE = 2 + CHAIN_LENGTH * VALUE_SIZE
TAG_PAYLOAD_SIZE = 1 + VALUE_SIZE
LAST_INDEX = CHAIN_LENGTH - 1


def build_tag_payload(card_id: int, value: int) -> bytes:
    """
    :return: 5 bytes tag payload: card identifier followed by the chain value.
    """
    if card_id not in range(0x100):
        raise ValueError("Card identifier out of range")
    return bytes((card_id,)) + value_to_bytes(value)


def parse_tag_payload(data: bytes) -> Tuple[int, bytes]:
    """
    Splits a tag payload read from a card.

    :return: Card identifier and the 4 bytes of the chain value.
    :raises ValueError: If payload has not the expected size.
    """
    if len(data) != TAG_PAYLOAD_SIZE:
        raise ValueError(
            f"Tag payload must be {TAG_PAYLOAD_SIZE} bytes, got {len(data)}"
        )
    return data[0], bytes(data[1:])


class HashChainRecord:
    """
    State of one rolling credential card: identifier, position in the chain
    and the whole chain.

    Serialized form is 402 bytes: card identifier, current index and the 100
    chain values encoded as 4 bytes little-endian integers.
    """

    def __init__(self, card_id: int, chain: List[int], current_index: int = 0):
        self.card_id = card_id
        self.current_index = current_index
        self.chain = list(chain)
        self.__check()

    @classmethod
    def from_bytes(cls, buf: bytes) -> "HashChainRecord":
        """
        Deserializes a record.

        :param buf: Serialized record, exactly 402 bytes.
        :raises ValueError: If the buffer cannot be decoded as a record.
        """
        if len(buf) != RECORD_SIZE:
            raise ValueError(f"Record must be {RECORD_SIZE} bytes, got {len(buf)}")
        chain = []
        for i in range(CHAIN_LENGTH):
            offset = 2 + i * VALUE_SIZE
            chain.append(value_from_bytes(buf[offset : offset + VALUE_SIZE]))
        if buf[1] > LAST_INDEX:
            raise ValueError(f"Invalid chain index {buf[1]}")
        return cls(buf[0], chain, buf[1])

    def to_bytes(self) -> bytes:
        """
        :return: Record serialized to bytes.
        """
        self.__check()
        result = bytearray((self.card_id, self.current_index))
        for value in self.chain:
            result += value_to_bytes(value)
        return bytes(result)

    def value(self, index: Optional[int] = None) -> int:
        """
        :param index: Chain index. Current index if None.
        :return: Chain value at the given index.
        """
        if index is None:
            index = self.current_index
        return self.chain[index]

    def tag_payload(self, index: Optional[int] = None) -> bytes:
        """:return: Payload to be written on the card for the given index."""
        return build_tag_payload(self.card_id, self.value(index))

    def matches(self, value_bytes: bytes) -> bool:
        """
        :param value_bytes: 4 bytes read from the card.
        :return: True if the bytes are exactly the expected current value.
        """
        return bytes(value_bytes) == value_to_bytes(self.value())

    @property
    def exhausted(self) -> bool:
        """True when the last chain value is the one expected on the card."""
        return self.current_index >= LAST_INDEX

    def copy(self) -> "HashChainRecord":
        return HashChainRecord(self.card_id, self.chain, self.current_index)

    def __eq__(self, other):
        if not isinstance(other, HashChainRecord):
            return NotImplemented
        return self.to_bytes() == other.to_bytes()

    def __repr__(self):
        return (
            f"HashChainRecord(card_id={self.card_id}, "
            f"current_index={self.current_index})"
        )

    def __check(self):
        """Check attributes types and values"""
        assert self.card_id in range(0x100)
        assert self.current_index in range(CHAIN_LENGTH)
        assert len(self.chain) == CHAIN_LENGTH
        for value in self.chain:
            assert value in range(0x100000000)
