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


import hashlib
import pytest
from lfchain.chain import (
    CHAIN_LENGTH,
    HashChainGenerator,
    fresh_seed,
    iterate_digests,
    value_from_bytes,
    value_to_bytes,
)


def md5_value(data: bytes) -> int:
    return int.from_bytes(hashlib.md5(data).digest()[:4], "little")


def test_last_value_is_hash_of_seed():
    seed = bytes(16)
    chain = HashChainGenerator.generate(seed)
    assert len(chain) == CHAIN_LENGTH
    assert chain[99] == md5_value(seed)


def test_chain_links():
    seed = bytes.fromhex("000102030405060708090a0b0c0d0e0f")
    chain = HashChainGenerator.generate(seed)
    # Digests in generation order: index 99 first, index 0 last.
    digests = list(iterate_digests(seed))
    buffers = {99 - n: digest for n, digest in enumerate(digests)}
    assert chain[99] == md5_value(seed)
    for i in range(CHAIN_LENGTH - 1):
        assert chain[i] == md5_value(buffers[i + 1])
        assert value_to_bytes(chain[i]) == buffers[i][:4]


def test_short_seed_is_zero_padded():
    assert HashChainGenerator.generate(b"\x00") == HashChainGenerator.generate(bytes(16))
    assert HashChainGenerator.generate(b"ab") == HashChainGenerator.generate(
        b"ab" + bytes(14)
    )


def test_long_seed_rejected():
    with pytest.raises(ValueError):
        HashChainGenerator.generate(bytes(17))


def test_different_seeds_give_different_chains():
    a = HashChainGenerator.generate(b"\x01")
    b = HashChainGenerator.generate(b"\x02")
    assert a[0] != b[0]
    assert a[99] != b[99]


def test_generate_fresh_uses_seed_source():
    seeds = [b"\x05" * 16]
    generator = HashChainGenerator(seed_source=lambda: seeds.pop())
    assert generator.generate_fresh() == HashChainGenerator.generate(b"\x05" * 16)
    assert len(seeds) == 0


def test_fresh_seed():
    a = fresh_seed()
    b = fresh_seed()
    assert len(a) == 16
    assert a != b


def test_value_encoding():
    assert value_to_bytes(0xAABBCCDD) == bytes.fromhex("ddccbbaa")
    assert value_from_bytes(bytes.fromhex("ddccbbaa")) == 0xAABBCCDD
    with pytest.raises(ValueError):
        value_from_bytes(b"\x00\x01")
