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


# Reads a tag and writes it back with its payload incremented by 1.

from lfchain.serial_worker import SerialTagWorker
from lfchain.tool import TagTool

worker = SerialTagWorker()
worker.verbose = True
tool = TagTool(worker, offset=1)
tool.read()
tool.wait()
print(tool.status)
if tool.tag_found:
    tool.write()
    tool.wait()
    print(tool.status)
worker.close()
