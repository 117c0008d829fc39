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
from .record import HashChainRecord, RECORD_SIZE


class RecordNotFound(LFChainError):
    """Thrown when no record exists for a card identifier."""

    def __init__(self, card_id: int):
        super().__init__(f"No record for card {card_id}")
        self.card_id = card_id


class RecordExists(LFChainError):
    """Thrown when creating a record for a card which already has one."""

    def __init__(self, card_id: int):
        super().__init__(f"Record for card {card_id} already exists")
        self.card_id = card_id


class RecordCorrupt(LFChainError):
    """Thrown when a stored record cannot be decoded."""

    def __init__(self, card_id: int, reason: str):
        super().__init__(f"Record for card {card_id} is corrupt: {reason}")
        self.card_id = card_id
        self.reason = reason


class CredentialStore:
    """
    Durable storage of hash chain records, one container file per card
    identifier. Files are named ``card_XXX.lfc``.
    """

    def __init__(self, directory: Union[str, Path]):
        """
        :param directory: Directory of the store. Created on first write.
        """
        self.directory = Path(directory)

    def container(self, card_id: int) -> ContainerFile:
        if card_id not in range(0x100):
            raise ValueError("Card identifier out of range")
        return ContainerFile(
            self.directory / f"card_{card_id:03d}.lfc",
            "lfchain chain record",
            "Chain",
            RECORD_SIZE,
        )

    def create(self, record: HashChainRecord):
        """
        Stores a new record.

        :raises RecordExists: If a record already exists for the card.
        :raises StorageFault: On I/O error.
        """
        try:
            self.container(record.card_id).create(record.to_bytes())
        except ContainerExists as e:
            raise RecordExists(record.card_id) from e

    def read(self, card_id: int) -> HashChainRecord:
        """
        :return: Record of the card.
        :raises RecordNotFound: If there is no record for the card.
        :raises RecordCorrupt: If the stored data is not a valid record.
        :raises StorageFault: On I/O error.
        """
        try:
            data = self.container(card_id).read()
        except ContainerMissing as e:
            raise RecordNotFound(card_id) from e
        except ContainerCorrupt as e:
            raise RecordCorrupt(card_id, e.reason) from e
        try:
            record = HashChainRecord.from_bytes(data)
        except ValueError as e:
            raise RecordCorrupt(card_id, str(e)) from e
        if record.card_id != card_id:
            raise RecordCorrupt(card_id, f"holds card {record.card_id}")
        return record

    def update(self, record: HashChainRecord):
        """
        Overwrites the record of a card. The record must have been created
        before.

        :raises RecordNotFound: If there is no record for the card.
        :raises StorageFault: On I/O error.
        """
        try:
            self.container(record.card_id).update(record.to_bytes())
        except ContainerMissing as e:
            raise RecordNotFound(record.card_id) from e

    def delete(self, card_id: int):
        """
        :raises RecordNotFound: If there is no record for the card.
        :raises StorageFault: On I/O error.
        """
        try:
            self.container(card_id).delete()
        except ContainerMissing as e:
            raise RecordNotFound(card_id) from e

    def card_ids(self) -> List[int]:
        """:return: Identifiers of all cards having a record, sorted."""
        result = []
        for card_id in range(0x100):
            if self.container(card_id).exists:
                result.append(card_id)
        return result
