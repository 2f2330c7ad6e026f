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

import io
import shutil
import struct
import tempfile
import zipfile
import zlib

from typing import BinaryIO, NamedTuple, Optional

from zipkit.Kernel import getLogger
from zipkit.Settings import (
    READ_CHUNK_SIZE, DEFAULT_COMPRESSION_LEVEL, ENCRYPTED_FLAG, DATA_DESCRIPTOR_FLAG, UTF8_FLAG
)

logger = getLogger(__name__)

# ZIP format constants (from PKZIP APPNOTE.TXT specification)
LOCAL_FILE_HEADER_SIGNATURE = struct.unpack('<I', zipfile.stringFileHeader)[0]  # 0x04034b50
CENTRAL_DIR_SIGNATURE = struct.unpack('<I', zipfile.stringCentralDir)[0]  # 0x02014b50
END_OF_CENTRAL_DIR_SIGNATURE = struct.unpack('<I', zipfile.stringEndArchive)[0]  # 0x06054b50
ZIP64_END_OF_CENTRAL_DIR_SIGNATURE = 0x06064b50
ZIP64_END_OF_CENTRAL_DIR_LOCATOR_SIGNATURE = 0x07064b50
DATA_DESCRIPTOR_SIGNATURE = 0x08074b50

ZIP64_EXTRA_TAG = 0x0001

# Compression methods (from zipfile module)
STORE = zipfile.ZIP_STORED  # 0
DEFLATE = zipfile.ZIP_DEFLATED  # 8

# Fixed record layouts
LOCAL_FILE_HEADER_STRUCT = struct.Struct('<IHHHHHIIIHH')  # 30 bytes
CENTRAL_DIR_STRUCT = struct.Struct('<IHHHHHHIIIHHHHHII')  # 46 bytes
END_OF_CENTRAL_DIR_STRUCT = struct.Struct('<IHHHHIIH')  # 22 bytes
ZIP64_END_OF_CENTRAL_DIR_STRUCT = struct.Struct('<IQHHIIQQQQ')  # 56 bytes
ZIP64_LOCATOR_STRUCT = struct.Struct('<IIQI')  # 20 bytes

MAX_COMMENT_LENGTH = 0xFFFF
ZIP64_LIMIT = 0xFFFFFFFF
ZIP64_COUNT_LIMIT = 0xFFFF


class ZipCodecError(RuntimeError):
    """Base class of every container-level failure"""


class BadZipError(ZipCodecError):
    """Container or record structure cannot be parsed"""


class EntryNotFoundError(ZipCodecError):
    """No entry at the requested position or with the requested name"""


class UnsupportedEntryError(ZipCodecError):
    """Entry is encrypted or uses a compression method other than store/deflate"""


class CRCMismatchError(ZipCodecError):
    """Decompressed data does not match the CRC-32 recorded in the directory"""

    def __init__(self, message: str, expected: int = None, actual: int = None):
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class GlobalInfo(NamedTuple):
    entryCount: int
    commentLength: int
    centralDirOffset: int
    centralDirSize: int
    commentOffset: int


class EntryInfo(NamedTuple):
    """One central directory record, sizes and offset already resolved through Zip64 extras"""
    versionMadeBy: int
    versionNeeded: int
    flag: int
    method: int
    dosTime: int
    dosDate: int
    crc: int
    compressedSize: int
    uncompressedSize: int
    diskStart: int
    internalAttr: int
    externalAttr: int
    localHeaderOffset: int
    nameBytes: bytes
    extra: bytes
    comment: bytes

    @property
    def isUtf8(self) -> bool:
        return bool(self.flag & UTF8_FLAG)

    @property
    def isEncrypted(self) -> bool:
        return bool(self.flag & ENCRYPTED_FLAG)

    @property
    def isDir(self) -> bool:
        return self.nameBytes.endswith(b'/')


class SeekToken(NamedTuple):
    """Position of a central directory record, reusable with UnzipHandle.goToFilePos()"""
    directoryOffset: int
    entryNumber: int


class _OpenEntry:
    """Read state of the entry opened by UnzipHandle.openCurrentFile()"""

    def __init__(self, info: EntryInfo, dataOffset: int):
        self.info = info
        self.position = dataOffset
        self.restCompressed = info.compressedSize
        self.restUncompressed = info.uncompressedSize
        self.crc = 0
        self.decompressor = zlib.decompressobj(-zlib.MAX_WBITS) if info.method == DEFLATE else None


def _parseZip64Extra(extra: bytes, uncompressedSize: int, compressedSize: int,
                     localHeaderOffset: int, diskStart: int) -> tuple:
    """
    Resolve 0xFFFFFFFF / 0xFFFF markers through the Zip64 extended information field

    Fields appear in fixed order, and only for the values whose 32-bit (or
    16-bit) slot holds the marker.

    Returns:
        tuple: (uncompressedSize, compressedSize, localHeaderOffset, diskStart)

    Raises:
        BadZipError: If a marker is set but the extra field is missing or short
    """
    needed = [uncompressedSize == ZIP64_LIMIT, compressedSize == ZIP64_LIMIT, localHeaderOffset == ZIP64_LIMIT]
    if not any(needed) and diskStart != ZIP64_COUNT_LIMIT:
        return uncompressedSize, compressedSize, localHeaderOffset, diskStart

    pos = 0
    while pos + 4 <= len(extra):
        tag, size = struct.unpack_from('<HH', extra, pos)
        pos += 4
        if tag != ZIP64_EXTRA_TAG:
            pos += size
            continue

        data = extra[pos:pos + size]
        cursor = 0
        values = [uncompressedSize, compressedSize, localHeaderOffset]
        for i, isMarker in enumerate(needed):
            if not isMarker:
                continue
            if cursor + 8 > len(data):
                raise BadZipError("Truncated Zip64 extra field")
            values[i] = struct.unpack_from('<Q', data, cursor)[0]
            cursor += 8

        if diskStart == ZIP64_COUNT_LIMIT and cursor + 4 <= len(data):
            diskStart = struct.unpack_from('<I', data, cursor)[0]

        return values[0], values[1], values[2], diskStart

    if any(needed):
        raise BadZipError("Zip64 marker without Zip64 extra field")
    return uncompressedSize, compressedSize, localHeaderOffset, diskStart


class UnzipHandle:
    """
    Read side of the container codec

    Walks the central directory one record at a time, the same way a cursor
    based unzip API does: goToFirstFile() / goToNextFile() move the cursor,
    getCurrentFileInfo() decodes the record under it, openCurrentFile() /
    readCurrentFile() / closeCurrentFile() stream the entry data.

    Notes:
    - Data prepended to the archive (self-extractors) is tolerated by
      re-basing every offset on the actual central directory position
    - Only store and deflate are supported, encrypted entries are refused
    """

    def __init__(self, fp: BinaryIO, ownsFile: bool = False, chunkSize: int = READ_CHUNK_SIZE):
        self._fp = fp
        self._ownsFile = ownsFile
        self._chunkSize = chunkSize
        self._closed = False
        self._entry = None

        try:
            self._globalInfo, self._bytesBefore = self._readEndOfCentralDir()
        except BaseException:
            self.close()
            raise

        self._currentNumber = 0
        self._currentOffset = self._globalInfo.centralDirOffset + self._bytesBefore

        logger.debug(
            f"Opened container: entries={self._globalInfo.entryCount}, "
            f"centralDir={self._globalInfo.centralDirOffset}+{self._globalInfo.centralDirSize}, "
            f"bytesBefore={self._bytesBefore}"
        )

    @classmethod
    def openPath(cls, path, chunkSize: int = READ_CHUNK_SIZE) -> "UnzipHandle":
        """
        Open a container from the filesystem

        Raises:
            BadZipError: If the file cannot be opened or is not a ZIP container
        """
        try:
            fp = open(path, 'rb')
        except OSError as e:
            raise BadZipError(f"Cannot open {path}: {e}") from e

        return cls(fp, ownsFile=True, chunkSize=chunkSize)

    @classmethod
    def openStream(cls, stream: BinaryIO, chunkSize: int = READ_CHUNK_SIZE) -> "UnzipHandle":
        """
        Open a container from a binary stream

        Seekable streams are used in place and stay owned by the caller.
        Non-seekable streams are spooled into a temporary buffer first.

        Raises:
            BadZipError: If the stream is not a ZIP container or cannot be read
        """
        seekable = getattr(stream, 'seekable', None)
        if seekable is not None and seekable():
            return cls(stream, ownsFile=False, chunkSize=chunkSize)

        spooled = tempfile.SpooledTemporaryFile(max_size=16 * 1024 * 1024)
        try:
            shutil.copyfileobj(stream, spooled, chunkSize)
            spooled.seek(0)
        except (OSError, ValueError) as e:
            spooled.close()
            raise BadZipError(f"Cannot read stream: {e}") from e

        logger.debug("Spooled non-seekable stream")
        return cls(spooled, ownsFile=True, chunkSize=chunkSize)

    @property
    def closed(self) -> bool:
        return self._closed

    def _checkOpen(self):
        if self._closed:
            raise ZipCodecError("Container is closed")

    def _readAt(self, offset: int, size: int) -> bytes:
        try:
            self._fp.seek(offset)
            return self._fp.read(size)
        except (OSError, ValueError, OverflowError) as e:
            raise BadZipError(f"Read failed at {offset}: {e}") from e

    def _readEndOfCentralDir(self) -> tuple:
        """
        Locate and decode the end of central directory record (and Zip64 records)

        Returns:
            tuple: (GlobalInfo, bytesBefore)

        Raises:
            BadZipError: If no valid end record exists
        """
        try:
            fileSize = self._fp.seek(0, io.SEEK_END)
        except (OSError, ValueError) as e:
            raise BadZipError(f"Cannot seek container: {e}") from e

        self._fileSize = fileSize
        if fileSize < END_OF_CENTRAL_DIR_STRUCT.size:
            raise BadZipError(f"File too small to be a ZIP container ({fileSize} bytes)")

        # EOCD is 22 bytes plus a comment of up to 65535 bytes
        tailSize = min(fileSize, END_OF_CENTRAL_DIR_STRUCT.size + MAX_COMMENT_LENGTH)
        tailStart = fileSize - tailSize
        tail = self._readAt(tailStart, tailSize)

        pos = len(tail)
        while True:
            pos = tail.rfind(zipfile.stringEndArchive, 0, pos)
            if pos < 0:
                raise BadZipError("End of central directory record not found")
            if pos + END_OF_CENTRAL_DIR_STRUCT.size <= len(tail):
                break
            # Signature bytes inside a truncated tail, keep looking

        (_, diskNumber, centralDirDisk, entriesOnDisk, entryCount,
         centralDirSize, centralDirOffset, commentLength) = END_OF_CENTRAL_DIR_STRUCT.unpack_from(tail, pos)

        eocdOffset = tailStart + pos
        commentOffset = eocdOffset + END_OF_CENTRAL_DIR_STRUCT.size
        commentLength = min(commentLength, fileSize - commentOffset)

        if diskNumber != 0 or centralDirDisk != 0 or entriesOnDisk != entryCount:
            raise BadZipError("Multi-disk archives are not supported")

        centralDirEnd = eocdOffset
        locatorOffset = eocdOffset - ZIP64_LOCATOR_STRUCT.size
        if locatorOffset >= 0:
            locator = self._readAt(locatorOffset, ZIP64_LOCATOR_STRUCT.size)
            signature, _, zip64EocdOffset, _ = ZIP64_LOCATOR_STRUCT.unpack(locator)
            if signature == ZIP64_END_OF_CENTRAL_DIR_LOCATOR_SIGNATURE:
                if zip64EocdOffset + ZIP64_END_OF_CENTRAL_DIR_STRUCT.size > locatorOffset:
                    raise BadZipError(f"Zip64 end of central directory offset {zip64EocdOffset} out of range")
                record = self._readAt(zip64EocdOffset, ZIP64_END_OF_CENTRAL_DIR_STRUCT.size)
                if len(record) != ZIP64_END_OF_CENTRAL_DIR_STRUCT.size:
                    raise BadZipError("Truncated Zip64 end of central directory record")
                (signature, _, _, _, _, _, _, entryCount,
                 centralDirSize, centralDirOffset) = ZIP64_END_OF_CENTRAL_DIR_STRUCT.unpack(record)
                if signature != ZIP64_END_OF_CENTRAL_DIR_SIGNATURE:
                    raise BadZipError("Bad Zip64 end of central directory signature")
                centralDirEnd = zip64EocdOffset
                logger.debug(f"Zip64 end of central directory at {zip64EocdOffset}")

        bytesBefore = centralDirEnd - (centralDirOffset + centralDirSize)
        if bytesBefore < 0:
            raise BadZipError("Central directory offset points past its end record")

        globalInfo = GlobalInfo(
            entryCount=entryCount,
            commentLength=commentLength,
            centralDirOffset=centralDirOffset,
            centralDirSize=centralDirSize,
            commentOffset=commentOffset,
        )
        return globalInfo, bytesBefore

    def getGlobalInfo(self) -> GlobalInfo:
        self._checkOpen()
        return self._globalInfo

    def goToFirstFile(self):
        self._checkOpen()
        self._currentNumber = 0
        self._currentOffset = self._globalInfo.centralDirOffset + self._bytesBefore

    def goToNextFile(self):
        """
        Advance the cursor to the next central directory record

        Raises:
            EntryNotFoundError: If the cursor is on the last entry
            BadZipError: If the current record is malformed
        """
        self._checkOpen()
        if self._currentNumber + 1 >= self._globalInfo.entryCount:
            raise EntryNotFoundError("End of central directory reached")

        recordSize = self._readRecord(self._currentOffset)[1]
        self._currentOffset += recordSize
        self._currentNumber += 1

    def _readRecord(self, offset: int) -> tuple:
        """
        Decode the central directory record at offset

        Returns:
            tuple: (EntryInfo, recordSize)
        """
        header = self._readAt(offset, CENTRAL_DIR_STRUCT.size)
        if len(header) != CENTRAL_DIR_STRUCT.size:
            raise BadZipError(f"Truncated central directory record at {offset}")

        (signature, versionMadeBy, versionNeeded, flag, method, dosTime, dosDate, crc,
         compressedSize, uncompressedSize, nameLength, extraLength, commentLength,
         diskStart, internalAttr, externalAttr, localHeaderOffset) = CENTRAL_DIR_STRUCT.unpack(header)

        if signature != CENTRAL_DIR_SIGNATURE:
            raise BadZipError(f"Bad central directory signature at {offset}")

        variableSize = nameLength + extraLength + commentLength
        variable = self._readAt(offset + CENTRAL_DIR_STRUCT.size, variableSize)
        if len(variable) != variableSize:
            raise BadZipError(f"Truncated central directory record at {offset}")

        nameBytes = variable[:nameLength]
        extra = variable[nameLength:nameLength + extraLength]
        comment = variable[nameLength + extraLength:]

        uncompressedSize, compressedSize, localHeaderOffset, diskStart = _parseZip64Extra(
            extra, uncompressedSize, compressedSize, localHeaderOffset, diskStart
        )

        info = EntryInfo(
            versionMadeBy=versionMadeBy,
            versionNeeded=versionNeeded,
            flag=flag,
            method=method,
            dosTime=dosTime,
            dosDate=dosDate,
            crc=crc,
            compressedSize=compressedSize,
            uncompressedSize=uncompressedSize,
            diskStart=diskStart,
            internalAttr=internalAttr,
            externalAttr=externalAttr,
            localHeaderOffset=localHeaderOffset,
            nameBytes=nameBytes,
            extra=extra,
            comment=comment,
        )
        return info, CENTRAL_DIR_STRUCT.size + variableSize

    def getCurrentFileInfo(self) -> EntryInfo:
        """
        Raises:
            BadZipError: If the record under the cursor is malformed
        """
        self._checkOpen()
        if self._globalInfo.entryCount == 0:
            raise EntryNotFoundError("Container has no entries")
        return self._readRecord(self._currentOffset)[0]

    def getFilePos(self) -> SeekToken:
        self._checkOpen()
        return SeekToken(self._currentOffset, self._currentNumber)

    def goToFilePos(self, token: SeekToken):
        """
        Jump straight to a record captured with getFilePos()

        Raises:
            BadZipError: If the token does not point at a valid record
        """
        self._checkOpen()
        if not (0 <= token.entryNumber < self._globalInfo.entryCount):
            raise EntryNotFoundError(f"Entry number {token.entryNumber} out of range")

        self._readRecord(token.directoryOffset)
        self._currentOffset = token.directoryOffset
        self._currentNumber = token.entryNumber

    def locateFile(self, nameBytes: bytes):
        """
        Move the cursor to the first entry whose stored name equals nameBytes

        The cursor is left where it was when no entry matches.

        Raises:
            EntryNotFoundError: If no entry has that name
        """
        self._checkOpen()
        savedOffset, savedNumber = self._currentOffset, self._currentNumber

        if self._globalInfo.entryCount > 0:
            self.goToFirstFile()
            while True:
                try:
                    info = self.getCurrentFileInfo()
                    if info.nameBytes == nameBytes:
                        return
                    self.goToNextFile()
                except ZipCodecError:
                    break

        self._currentOffset, self._currentNumber = savedOffset, savedNumber
        raise EntryNotFoundError(f"Entry not found: {nameBytes!r}")

    def openCurrentFile(self, password: Optional[bytes] = None):
        """
        Open the entry under the cursor for reading

        Args:
            password: Accepted for interface parity, must be None

        Raises:
            UnsupportedEntryError: Encrypted entry, password given, or unknown method
            BadZipError: If the local header is invalid
        """
        self._checkOpen()
        if self._entry is not None:
            self.closeCurrentFile(checkCRC=False)

        info = self.getCurrentFileInfo()

        if password is not None or info.isEncrypted:
            raise UnsupportedEntryError("Encrypted entries are not supported")

        if info.method not in (STORE, DEFLATE):
            raise UnsupportedEntryError(f"Unsupported compression method {info.method}")

        headerOffset = info.localHeaderOffset + self._bytesBefore
        if headerOffset + LOCAL_FILE_HEADER_STRUCT.size > self._fileSize:
            raise BadZipError(f"Local header offset {headerOffset} out of range")

        header = self._readAt(headerOffset, LOCAL_FILE_HEADER_STRUCT.size)
        if len(header) != LOCAL_FILE_HEADER_STRUCT.size:
            raise BadZipError(f"Truncated local file header at {headerOffset}")

        fields = LOCAL_FILE_HEADER_STRUCT.unpack(header)
        signature, nameLength, extraLength = fields[0], fields[9], fields[10]
        if signature != LOCAL_FILE_HEADER_SIGNATURE:
            raise BadZipError(f"Bad local file header signature at {headerOffset}")

        dataOffset = headerOffset + LOCAL_FILE_HEADER_STRUCT.size + nameLength + extraLength
        self._entry = _OpenEntry(info, dataOffset)

    def _readCompressed(self, entry: _OpenEntry, limit: int = None) -> bytes:
        size = min(self._chunkSize, entry.restCompressed)
        if limit is not None:
            size = min(size, limit)
        data = self._readAt(entry.position, size)
        entry.position += len(data)
        entry.restCompressed -= len(data)
        return data

    def readCurrentFile(self, buffer) -> int:
        """
        Decompress from the open entry into buffer

        Never produces more than the declared uncompressed size.

        Args:
            buffer: Writable bytes-like object (bytearray, memoryview)

        Returns:
            int: Number of bytes written, less than len(buffer) at end of data

        Raises:
            ZipCodecError: If no entry is open
            BadZipError: If the compressed data is corrupt
        """
        self._checkOpen()
        entry = self._entry
        if entry is None:
            raise ZipCodecError("No entry is open")

        view = memoryview(buffer).cast('B')
        want = min(len(view), entry.restUncompressed)
        written = 0

        while written < want:
            if entry.decompressor is None:
                if entry.restCompressed <= 0:
                    break
                out = self._readCompressed(entry, want - written)
                if not out:
                    break
            else:
                decompressor = entry.decompressor
                try:
                    if decompressor.unconsumed_tail:
                        out = decompressor.decompress(decompressor.unconsumed_tail, want - written)
                    elif decompressor.eof:
                        break
                    elif entry.restCompressed > 0:
                        data = self._readCompressed(entry)
                        if not data:
                            break
                        out = decompressor.decompress(data, want - written)
                    else:
                        out = decompressor.flush()[:want - written]
                        if not out:
                            break
                except zlib.error as e:
                    raise BadZipError(f"Corrupt deflate stream: {e}") from e

            view[written:written + len(out)] = out
            written += len(out)
            entry.crc = zlib.crc32(out, entry.crc)
            entry.restUncompressed -= len(out)

        return written

    def closeCurrentFile(self, checkCRC: bool = True):
        """
        Close the open entry

        The CRC is only verified when the entry was read to its declared end.

        Raises:
            CRCMismatchError: If the data read does not match the recorded CRC
        """
        entry = self._entry
        self._entry = None
        if entry is None or not checkCRC:
            return

        if entry.restUncompressed == 0 and (entry.crc & 0xFFFFFFFF) != entry.info.crc:
            raise CRCMismatchError(
                f"CRC mismatch for {entry.info.nameBytes!r}", expected=entry.info.crc, actual=entry.crc
            )

    def getGlobalComment(self, size: int) -> bytes:
        """
        Read up to size bytes of the archive comment
        """
        self._checkOpen()
        size = min(size, self._globalInfo.commentLength)
        if size <= 0:
            return b''
        return self._readAt(self._globalInfo.commentOffset, size)

    def close(self):
        if self._closed:
            return
        self._closed = True
        self._entry = None
        if self._ownsFile:
            try:
                self._fp.close()
            except OSError as e:
                logger.warning(f"Error closing container: {e}")

    def __enter__(self):
        return self

    def __exit__(self, excType, excValue, traceback):
        self.close()


class ZipWriterHandle:
    """
    Write side of the container codec

    Entries are written as local header + data + data descriptor, so sizes and
    CRC need not be known up front. Zip64 descriptor, extra fields and end
    records are emitted only when a value overflows its 32-bit (or 16-bit) slot.

    Notes:
    - Filename encoding: UTF-8 (bit 11 set)
    - Compression: deflate (raw stream, no zlib header)
    """

    def __init__(self, fp: BinaryIO, ownsFile: bool = False):
        self._fp = fp
        self._ownsFile = ownsFile
        self._offset = 0
        self._centralDir = []
        self._entry = None
        self._closed = False

    @classmethod
    def open(cls, path) -> "ZipWriterHandle":
        """
        Create (or truncate) a container for writing

        Raises:
            ZipCodecError: If the file cannot be created
        """
        try:
            fp = open(path, 'wb')
        except OSError as e:
            raise ZipCodecError(f"Cannot create {path}: {e}") from e

        logger.debug(f"Creating container {path}")
        return cls(fp, ownsFile=True)

    def _write(self, data: bytes):
        try:
            self._fp.write(data)
        except (OSError, ValueError) as e:
            raise ZipCodecError(f"Write failed at {self._offset}: {e}") from e
        self._offset += len(data)

    def openNewFile(self, nameBytes: bytes, method: int = DEFLATE, level: int = DEFAULT_COMPRESSION_LEVEL,
                    dosTime: int = 0, dosDate: int = 0, flags: int = UTF8_FLAG):
        """
        Start a new entry

        Args:
            nameBytes: Encoded entry name
            method: STORE or DEFLATE
            level: zlib compression level for DEFLATE
            dosTime: DOS-packed modification time
            dosDate: DOS-packed modification date
            flags: General purpose flags, DATA_DESCRIPTOR_FLAG is always added

        Raises:
            ZipCodecError: If an entry is already open or the header cannot be written
        """
        if self._closed:
            raise ZipCodecError("Container is closed")
        if self._entry is not None:
            raise ZipCodecError("Previous entry is still open")
        if method not in (STORE, DEFLATE):
            raise UnsupportedEntryError(f"Unsupported compression method {method}")
        if len(nameBytes) > 0xFFFF:
            raise ZipCodecError("Entry name too long")

        flags |= DATA_DESCRIPTOR_FLAG
        headerOffset = self._offset

        header = self._makeLocalFileHeader(nameBytes, flags, method, dosTime, dosDate, headerOffset)
        self._write(header)

        self._entry = {
            'nameBytes': nameBytes,
            'flags': flags,
            'method': method,
            'dosTime': dosTime,
            'dosDate': dosDate,
            'offset': headerOffset,
            'crc': 0,
            'compressedSize': 0,
            'uncompressedSize': 0,
            'compressor': zlib.compressobj(level, zlib.DEFLATED, -zlib.MAX_WBITS) if method == DEFLATE else None,
        }

    def write(self, data: bytes):
        """
        Raises:
            ZipCodecError: If no entry is open or the write fails
        """
        entry = self._entry
        if entry is None:
            raise ZipCodecError("No entry is open")

        entry['crc'] = zlib.crc32(data, entry['crc'])
        entry['uncompressedSize'] += len(data)

        out = entry['compressor'].compress(data) if entry['compressor'] else bytes(data)
        if out:
            self._write(out)
            entry['compressedSize'] += len(out)

    def closeFile(self):
        """
        Flush the compressor and write the data descriptor

        Raises:
            ZipCodecError: If no entry is open or the write fails
        """
        entry = self._entry
        if entry is None:
            raise ZipCodecError("No entry is open")
        self._entry = None

        if entry['compressor']:
            out = entry['compressor'].flush()
            if out:
                self._write(out)
                entry['compressedSize'] += len(out)

        useZip64 = entry['compressedSize'] >= ZIP64_LIMIT or entry['uncompressedSize'] >= ZIP64_LIMIT
        self._write(self._makeDataDescriptor(
            entry['crc'], entry['compressedSize'], entry['uncompressedSize'], useZip64
        ))

        del entry['compressor']
        self._centralDir.append(entry)

        logger.debug(
            f"Entry written: {entry['nameBytes']!r} {entry['uncompressedSize']} -> {entry['compressedSize']} bytes"
        )

    def close(self, comment: bytes = b''):
        """
        Write central directory and end records, then close the file

        The underlying file is closed even when finalizing fails. An entry
        left open by a failed write is abandoned, not finalized.

        Raises:
            ZipCodecError: If the trailing records cannot be written
        """
        if self._closed:
            return
        self._closed = True

        try:
            if self._entry is not None:
                logger.warning(f"Abandoning unfinished entry {self._entry['nameBytes']!r}")
                self._entry = None

            if len(comment) > MAX_COMMENT_LENGTH:
                raise ZipCodecError("Archive comment too long")

            centralDirStart = self._offset
            for cdEntry in self._centralDir:
                self._write(self._makeCentralDirHeader(cdEntry))
            centralDirSize = self._offset - centralDirStart

            self._writeEndOfCentralDirectory(centralDirSize, centralDirStart, comment)

            try:
                self._fp.flush()
            except (OSError, ValueError) as e:
                raise ZipCodecError(f"Flush failed: {e}") from e
        finally:
            if self._ownsFile:
                try:
                    self._fp.close()
                except OSError as e:
                    logger.warning(f"Error closing container: {e}")

    def __enter__(self):
        return self

    def __exit__(self, excType, excValue, traceback):
        self.close()

    def _writeEndOfCentralDirectory(self, centralDirSize: int, centralDirStart: int, comment: bytes):
        entryCount = len(self._centralDir)
        needsZip64 = (entryCount > ZIP64_COUNT_LIMIT or
                      centralDirSize >= ZIP64_LIMIT or
                      centralDirStart >= ZIP64_LIMIT)

        if needsZip64:
            zip64EocdOffset = self._offset
            self._write(self._makeZip64EndOfCentralDir(entryCount, centralDirSize, centralDirStart))
            self._write(self._makeZip64Locator(zip64EocdOffset))

        self._write(self._makeEndOfCentralDir(entryCount, centralDirSize, centralDirStart, comment))

    @staticmethod
    def _makeLocalFileHeader(nameBytes: bytes, flags: int, method: int, dosTime: int, dosDate: int,
                             offset: int) -> bytes:
        """Create ZIP local file header, CRC and sizes deferred to the data descriptor"""
        versionNeeded = 45 if offset >= ZIP64_LIMIT else 20

        return LOCAL_FILE_HEADER_STRUCT.pack(
            LOCAL_FILE_HEADER_SIGNATURE,
            versionNeeded,
            flags,
            method,
            dosTime,
            dosDate,
            0,  # CRC-32
            0,  # Compressed size
            0,  # Uncompressed size
            len(nameBytes),
            0,  # Extra field length
        ) + nameBytes

    @staticmethod
    def _makeDataDescriptor(crc: int, compressedSize: int, uncompressedSize: int, useZip64: bool) -> bytes:
        if useZip64:
            return struct.pack('<IIQQ', DATA_DESCRIPTOR_SIGNATURE, crc & 0xFFFFFFFF,
                               compressedSize, uncompressedSize)
        return struct.pack('<IIII', DATA_DESCRIPTOR_SIGNATURE, crc & 0xFFFFFFFF,
                           compressedSize, uncompressedSize)

    @staticmethod
    def _makeCentralDirHeader(entry: dict) -> bytes:
        """Create ZIP central directory header with Zip64 support"""
        compressedSize = entry['compressedSize']
        uncompressedSize = entry['uncompressedSize']
        offset = entry['offset']
        nameBytes = entry['nameBytes']

        extraData = b''
        if uncompressedSize >= ZIP64_LIMIT:
            extraData += struct.pack('<Q', uncompressedSize)
        if compressedSize >= ZIP64_LIMIT:
            extraData += struct.pack('<Q', compressedSize)
        if offset >= ZIP64_LIMIT:
            extraData += struct.pack('<Q', offset)

        extraField = struct.pack('<HH', ZIP64_EXTRA_TAG, len(extraData)) + extraData if extraData else b''
        version = 45 if extraData else 20
        externalAttr = 0x10 if nameBytes.endswith(b'/') else 0x20  # Directory or archive attribute

        return CENTRAL_DIR_STRUCT.pack(
            CENTRAL_DIR_SIGNATURE,
            version,  # Version made by
            version,  # Version needed to extract
            entry['flags'],
            entry['method'],
            entry['dosTime'],
            entry['dosDate'],
            entry['crc'] & 0xFFFFFFFF,
            min(compressedSize, ZIP64_LIMIT),
            min(uncompressedSize, ZIP64_LIMIT),
            len(nameBytes),
            len(extraField),
            0,  # File comment length
            0,  # Disk number start
            0,  # Internal file attributes
            externalAttr,
            min(offset, ZIP64_LIMIT),
        ) + nameBytes + extraField

    @staticmethod
    def _makeZip64EndOfCentralDir(entryCount: int, centralDirSize: int, centralDirStart: int) -> bytes:
        return ZIP64_END_OF_CENTRAL_DIR_STRUCT.pack(
            ZIP64_END_OF_CENTRAL_DIR_SIGNATURE,
            44,  # Size of the remaining record
            45,  # Version made by
            45,  # Version needed to extract
            0,  # Number of this disk
            0,  # Disk where central directory starts
            entryCount,
            entryCount,
            centralDirSize,
            centralDirStart,
        )

    @staticmethod
    def _makeZip64Locator(zip64EocdOffset: int) -> bytes:
        return ZIP64_LOCATOR_STRUCT.pack(
            ZIP64_END_OF_CENTRAL_DIR_LOCATOR_SIGNATURE,
            0,  # Disk number with zip64 EOCD
            zip64EocdOffset,
            1,  # Total number of disks
        )

    @staticmethod
    def _makeEndOfCentralDir(entryCount: int, centralDirSize: int, centralDirStart: int,
                             comment: bytes = b'') -> bytes:
        """Create end of central directory record, 0xFFFF/0xFFFFFFFF markers for Zip64"""
        maxEntries = min(entryCount, ZIP64_COUNT_LIMIT)

        return END_OF_CENTRAL_DIR_STRUCT.pack(
            END_OF_CENTRAL_DIR_SIGNATURE,
            0,  # Number of this disk
            0,  # Disk where central directory starts
            maxEntries,
            maxEntries,
            min(centralDirSize, ZIP64_LIMIT),
            min(centralDirStart, ZIP64_LIMIT),
            len(comment),
        ) + comment
