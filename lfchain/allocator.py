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


from pathlib import Path
from typing import List, Union
from . import LFChainError
from .container import (
    ContainerFile,
    ContainerMissing,
    ContainerExists,
    ContainerCorrupt,
)


TABLE_SIZE = 256
TABLE_FILENAME = "card_ids.lfc"


class TableMissing(LFChainError):
    """Thrown when the identifier table has not been created yet."""

    def __init__(self):
        super().__init__("Identifier table does not exist")


class TableCorrupt(LFChainError):
    """Thrown when the identifier table cannot be parsed."""

    def __init__(self, reason: str):
        super().__init__(f"Identifier table is corrupt: {reason}")
        self.reason = reason


class IdentifiersExhausted(LFChainError):
    """Thrown when all card identifiers 1 to 255 are allocated."""

    def __init__(self):
        super().__init__("No free card identifier")


class IdentifierAllocator:
    """
    Allocates card identifiers from a 256 entries bitmap stored in a
    container file. Entry value 0 means free, 1 means allocated. Identifier 0
    is reserved and is never returned.
    """

    def __init__(self, directory: Union[str, Path]):
        """
        :param directory: Directory of the store.
        """
        self.container = ContainerFile(
            Path(directory) / TABLE_FILENAME, "lfchain card ids", "Bitmap", TABLE_SIZE
        )

    def ensure_table_exists(self):
        """
        Creates an empty table if none exists. An existing table is left
        untouched.

        :raises StorageFault: If the store cannot be written.
        """
        if self.container.exists:
            return
        try:
            self.container.create(bytes(TABLE_SIZE))
        except ContainerExists:
            pass

    def __load(self) -> bytearray:
        try:
            table = bytearray(self.container.read())
        except ContainerMissing as e:
            raise TableMissing() from e
        except ContainerCorrupt as e:
            raise TableCorrupt(e.reason) from e
        if any(b not in (0, 1) for b in table):
            raise TableCorrupt("invalid entry value")
        return table

    def __store(self, table: bytearray):
        try:
            self.container.update(bytes(table))
        except ContainerMissing as e:
            raise TableMissing() from e

    def allocate(self) -> int:
        """
        Reserves the lowest free identifier.

        :return: Allocated identifier, in range 1-255.
        :raises TableMissing: If the table does not exist.
        :raises TableCorrupt: If the table cannot be parsed.
        :raises IdentifiersExhausted: If all identifiers are allocated.
        :raises StorageFault: If the table cannot be written back. In that
            case no identifier has been allocated.
        """
        table = self.__load()
        for card_id in range(1, TABLE_SIZE):
            if table[card_id] == 0:
                table[card_id] = 1
                self.__store(table)
                return card_id
        raise IdentifiersExhausted()

    def release(self, card_id: int):
        """
        Marks an identifier as free, so it can be allocated again. Releasing a
        free identifier does nothing.

        :param card_id: Identifier in range 1-255.
        """
        if card_id not in range(1, TABLE_SIZE):
            raise ValueError("Invalid card identifier")
        table = self.__load()
        if table[card_id] == 0:
            return
        table[card_id] = 0
        self.__store(table)

    def allocated(self) -> List[int]:
        """:return: List of allocated identifiers."""
        table = self.__load()
        return [i for i in range(1, TABLE_SIZE) if table[i] != 0]
