#!/usr/bin/python3
#
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


# Creates a rolling credential card, then presents it three times.

import sys
from lfchain.allocator import IdentifierAllocator
from lfchain.protocol import RollingAuthProtocol
from lfchain.serial_worker import SerialTagWorker
from lfchain.store import CredentialStore

store_dir = sys.argv[1] if len(sys.argv) > 1 else "cards"
worker = SerialTagWorker()
worker.verbose = True
protocol = RollingAuthProtocol(
    worker, IdentifierAllocator(store_dir), CredentialStore(store_dir)
)
protocol.verbose = True

print("Place card to create near the reader")
protocol.create()
outcome = protocol.run(timeout=10)
print(outcome)
protocol.acknowledge()

for i in range(3):
    input("Present the card and press enter")
    protocol.verify()
    outcome = protocol.run(timeout=10)
    for o in protocol.history:
        print(o)
    protocol.acknowledge()

worker.close()
