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
import time
from typing import Callable, Iterator, List
from Crypto.Hash import MD5


CHAIN_LENGTH = 100
SEED_SIZE = 16
VALUE_SIZE = 4


def one_way(data: bytes) -> bytes:
    """
    One-way function used to build hash chains.

    :param data: Input buffer.
    :return: 16 bytes digest.
    """
    return MD5.new(data).digest()


def value_to_bytes(value: int) -> bytes:
    """:return: 4 bytes little-endian encoding of a chain value."""
    return value.to_bytes(VALUE_SIZE, "little")


def value_from_bytes(data: bytes) -> int:
    """:return: Chain value decoded from its 4 bytes little-endian encoding."""
    if len(data) != VALUE_SIZE:
        raise ValueError(f"Chain value must be {VALUE_SIZE} bytes")
    return int.from_bytes(data, "little")


def fresh_seed() -> bytes:
    """
    Builds a new seed from the wall-clock time and random bytes from the OS.
    Two seeds returned by this function are not expected to be equal.
    """
    return time.time_ns().to_bytes(8, "little") + os.urandom(SEED_SIZE - 8)


def iterate_digests(seed: bytes) -> Iterator[bytes]:
    """
    Yields the successive full digests of the chain, starting from the digest
    of index 99 down to the digest of index 0.

    :param seed: Seed bytes. Zero-padded up to 16 bytes.
    """
    if len(seed) > SEED_SIZE:
        raise ValueError(f"Seed cannot be longer than {SEED_SIZE} bytes")
    buf = bytes(seed) + bytes(SEED_SIZE - len(seed))
    for _ in range(CHAIN_LENGTH):
        buf = one_way(buf)
        yield buf


class HashChainGenerator:
    """
    Derives a one-way hash chain of 100 values from a seed.

    The chain is built from the highest index down to index 0: chain[99] is
    the hash of the seed, and chain[i] is the hash of the buffer which gave
    chain[i + 1]. Values are consumed from index 0 upward, so a revealed value
    never helps computing a value which has not been revealed yet.
    """

    def __init__(self, seed_source: Callable[[], bytes] = fresh_seed):
        """
        :param seed_source: Function returning a new unpredictable seed each
            time it is called.
        """
        self.seed_source = seed_source

    @staticmethod
    def generate(seed: bytes) -> List[int]:
        """
        :param seed: Seed bytes, at most 16 bytes long.
        :return: List of 100 unsigned 32-bit chain values, index 0 first.
        """
        chain = [0] * CHAIN_LENGTH
        i = CHAIN_LENGTH - 1
        for digest in iterate_digests(seed):
            chain[i] = value_from_bytes(digest[:VALUE_SIZE])
            i -= 1
        return chain

    def generate_fresh(self) -> List[int]:
        """:return: A chain generated from a new seed."""
        return self.generate(self.seed_source())
