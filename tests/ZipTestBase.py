#!/usr/bin/env python
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0
#
# ZipKit - Indexed ZIP archive reader and writer
# Copyright (C) 2024-2025 ZipKit contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import os
import shutil
import struct
import tempfile
import unittest
import zlib

from types import SimpleNamespace

from zipkit.Settings import READ_CHUNK_SIZE, DEFAULT_COMPRESSION_LEVEL


# ---------------------------
# Raw archive helpers
# ---------------------------
def rawEntry(name, data=b'', method=0, flag=0, crc=None, uncompressedSize=None, zip64Size=None,
             zip64Offset=None, dosTime=0, dosDate=(1 << 5) | 1):
    """
    Describe one entry for buildRawZip()

    Args:
        name: Entry name as bytes, stored verbatim
        data: Uncompressed content
        method: 0 (store) or 8 (deflate)
        flag: General purpose flags
        crc: CRC-32 recorded in the directory, defaults to the real one
        uncompressedSize: Size recorded in the directory, defaults to len(data)
        zip64Size: If set, the directory records 0xFFFFFFFF and this value goes to a Zip64 extra
        zip64Offset: Same for the local header offset
    """
    return {
        'name': name,
        'data': data,
        'method': method,
        'flag': flag,
        'crc': zlib.crc32(data) if crc is None else crc,
        'uncompressedSize': len(data) if uncompressedSize is None else uncompressedSize,
        'zip64Size': zip64Size,
        'zip64Offset': zip64Offset,
        'dosTime': dosTime,
        'dosDate': dosDate,
    }


def buildRawZip(entries, comment=b'', prefix=b''):
    """Serialize entries into a ZIP container without going through any writer"""
    out = bytearray(prefix)
    records = []

    for entry in entries:
        if entry['method'] == 8:
            compressor = zlib.compressobj(9, zlib.DEFLATED, -zlib.MAX_WBITS)
            payload = compressor.compress(entry['data']) + compressor.flush()
        else:
            payload = entry['data']

        offset = len(out) - len(prefix)
        out += struct.pack(
            '<IHHHHHIIIHH', 0x04034b50, 20, entry['flag'], entry['method'], entry['dosTime'],
            entry['dosDate'], entry['crc'], len(payload), entry['uncompressedSize'], len(entry['name']), 0
        )
        out += entry['name']
        out += payload
        records.append((entry, offset, len(payload)))

    centralDirStart = len(out) - len(prefix)
    for entry, offset, compressedSize in records:
        zip64Data = b''
        uncompressedSize = entry['uncompressedSize']
        if entry['zip64Size'] is not None:
            zip64Data += struct.pack('<Q', entry['zip64Size'])
            uncompressedSize = 0xFFFFFFFF
        if entry['zip64Offset'] is not None:
            zip64Data += struct.pack('<Q', entry['zip64Offset'])
            offset = 0xFFFFFFFF
        extra = struct.pack('<HH', 0x0001, len(zip64Data)) + zip64Data if zip64Data else b''

        out += struct.pack(
            '<IHHHHHHIIIHHHHHII', 0x02014b50, 20, 20, entry['flag'], entry['method'], entry['dosTime'],
            entry['dosDate'], entry['crc'], compressedSize, uncompressedSize, len(entry['name']),
            len(extra), 0, 0, 0, 0, offset
        )
        out += entry['name'] + extra

    centralDirSize = len(out) - len(prefix) - centralDirStart
    out += struct.pack('<IHHHHIIH', 0x06054b50, 0, 0, len(entries), len(entries),
                       centralDirSize, centralDirStart, len(comment))
    out += comment
    return bytes(out)


def withZip64Locator(archive, zip64EocdOffset):
    """Insert a Zip64 end of central directory locator in front of the end record"""
    eocdPos = archive.rfind(b'PK\x05\x06')
    locator = struct.pack('<IIQI', 0x07064b50, 0, zip64EocdOffset, 1)
    return archive[:eocdPos] + locator + archive[eocdPos:]


def makeSettings(**overrides):
    """Stand-alone settings object, leaves the SettingsGetter singleton untouched"""
    values = {
        'readChunkSize': READ_CHUNK_SIZE,
        'compressionLevel': DEFAULT_COMPRESSION_LEVEL,
        'maxEntrySize': 0,
        'useSeekTokens': True,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


class NonSeekableStream:
    """Read-only stream that refuses to seek, like a pipe or socket"""

    def __init__(self, data):
        self._data = data
        self._pos = 0

    def seekable(self):
        return False

    def read(self, size=-1):
        if size is None or size < 0:
            size = len(self._data) - self._pos
        chunk = self._data[self._pos:self._pos + size]
        self._pos += len(chunk)
        return chunk


# ---------------------------
# Base test class
# ---------------------------
class ZipTestBase(unittest.TestCase):
    """Base class providing a scratch directory and file helpers"""

    def setUp(self):
        self.tempDir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.tempDir, ignore_errors=True)

    def writeFile(self, relPath, content, mtime=None):
        path = os.path.join(self.tempDir, relPath)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, 'wb') as f:
            f.write(content)
        if mtime is not None:
            os.utime(path, (mtime, mtime))
        return path

    def readFile(self, path):
        with open(path, 'rb') as f:
            return f.read()
