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

"""
Low-frequency RFID credential toolkit: offset rewriting, emulation and hash
chain based rolling credentials.
"""

__version__ = "0.3.1"


class LFChainError(Exception):
    """Base class for all errors raised by this package."""

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message

    def __str__(self):
        return self.message or self.__class__.__name__


class StorageFault(LFChainError):
    """Thrown when the backing store cannot be read or written."""

    def __init__(self, path, reason: str = ""):
        super().__init__(f"Storage fault on {path}" + (f": {reason}" if reason else ""))
        self.path = path
        self.reason = reason
