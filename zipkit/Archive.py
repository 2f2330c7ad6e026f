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
import sys
import datetime

from typing import Iterator, List, NamedTuple, Optional, Tuple, Union

from zipkit.Kernel import getLogger, ZipEvent
from zipkit.Settings import CP_ZIP, CP_UTF8, SettingsGetter
from zipkit.Codec import (
    UnzipHandle, ZipWriterHandle, ZipCodecError, CRCMismatchError, EntryNotFoundError,
    EntryInfo, SeekToken, DEFLATE
)
from zipkit.Utils import (
    quickHashI, equalsI, dosDateTimeToDatetime, unixToDosTime, isSep, isAbsolutePath, baseName,
    archiveNameToLocalPath
)

logger = getLogger(__name__)

# Largest value a native size_t holds; extraction sizes are narrowed to it
ADDRESSABLE_SIZE_MASK = sys.maxsize * 2 + 1

# Double NUL appended after every extracted payload (wide-character terminator)
TERMINATOR_SIZE = 2

EntryKey = Union[int, str]


def _notify(event, **kwargs):
    """Trigger event, logging observer failures instead of raising them"""
    try:
        event.trigger(**kwargs)
    except Exception as e:
        logger.warning(f"Observer of {event.key} failed: {e!r}")


class EntryRecord(NamedTuple):
    name: str
    nameHash: int
    info: EntryInfo
    seekToken: Optional[SeekToken]


class EntryData:
    """
    Payload of one extracted entry

    buffer holds exactly size + 2 bytes: the payload followed by two NUL bytes,
    so callers that treat the data as UTF-16 text find it terminated.
    The buffer is fresh for every extraction and owned by the caller.
    """

    __slots__ = ('buffer', 'size')

    def __init__(self, buffer: bytearray, size: int):
        self.buffer = buffer
        self.size = size

    @property
    def payload(self) -> bytes:
        return bytes(memoryview(self.buffer)[:self.size])

    def text(self, encoding: str = 'utf-8', errors: str = 'strict') -> str:
        return self.payload.decode(encoding, errors)

    def __len__(self):
        return self.size

    def __bytes__(self):
        return self.payload

    def __repr__(self):
        return f"EntryData(size={self.size})"


class ArchiveIndex:
    """
    Indexed, case-insensitive reader for a ZIP container

    The directory is read once, eagerly, when the index is created. Opening
    never raises: a source that cannot be opened yields an empty index whose
    queries all come back empty (None / False).

    Usage:
        with ArchiveIndex('book.epub') as archive:
            data = archive.getFileData('META-INF/container.xml')
    """

    def __init__(self, source, settings: SettingsGetter = None):
        """
        Args:
            source: Filesystem path or binary stream
            settings: Configuration, defaults to the SettingsGetter singleton
        """
        self.settings = settings or SettingsGetter.getInstance()
        self.commentLength = 0

        self._handle = None
        self._entries: List[EntryRecord] = []
        self._nameHashes: List[int] = []

        try:
            if isinstance(source, (str, bytes, os.PathLike)):
                self._handle = UnzipHandle.openPath(source, chunkSize=self.settings.readChunkSize)
            else:
                self._handle = UnzipHandle.openStream(source, chunkSize=self.settings.readChunkSize)
        except ZipCodecError as e:
            logger.debug(f"Cannot open archive {source!r}: {e}")
            return

        self._extractFilenames()

        _notify(ZipEvent.archiveOpen, archive=self, entryCount=len(self._entries))

    @staticmethod
    def _codePageOf(info: EntryInfo) -> str:
        return CP_UTF8 if info.isUtf8 else CP_ZIP

    def _extractFilenames(self):
        """
        Walk every central directory record in physical order

        Stops at the first malformed record, keeping what was decoded before it.
        """
        handle = self._handle
        globalInfo = handle.getGlobalInfo()
        handle.goToFirstFile()

        for i in range(globalInfo.entryCount):
            try:
                info = handle.getCurrentFileInfo()
            except ZipCodecError as e:
                logger.warning(f"Malformed directory record #{i}, index truncated: {e}")
                break

            name = info.nameBytes.decode(self._codePageOf(info), errors='replace')
            nameHash = quickHashI(name)

            seekToken = None
            if self.settings.useSeekTokens:
                try:
                    seekToken = handle.getFilePos()
                except ZipCodecError as e:
                    logger.debug(f"No seek token for {name}: {e}")

            self._entries.append(EntryRecord(name, nameHash, info, seekToken))
            self._nameHashes.append(nameHash)

            try:
                handle.goToNextFile()
            except EntryNotFoundError:
                break
            except ZipCodecError as e:
                logger.warning(f"Malformed directory record after #{i}, index truncated: {e}")
                break

        self.commentLength = globalInfo.commentLength

        logger.debug(f"Indexed {len(self._entries)}/{globalInfo.entryCount} entries")

    @property
    def isOpen(self) -> bool:
        return self._handle is not None and not self._handle.closed

    def close(self):
        """Release the container handle. Safe to call more than once."""
        if self._handle is not None:
            self._handle.close()

    def __enter__(self):
        return self

    def __exit__(self, excType, excValue, traceback):
        self.close()

    def __len__(self):
        return self.getFileCount()

    def __iter__(self) -> Iterator[EntryRecord]:
        return iter(list(self._entries))

    @property
    def entries(self) -> Tuple[EntryRecord, ...]:
        return tuple(self._entries)

    def getFileCount(self) -> int:
        return len(self._entries)

    def getFileName(self, index: int) -> Optional[str]:
        if not 0 <= index < len(self._entries):
            return None
        return self._entries[index].name

    def getFileIndex(self, name: str) -> Optional[int]:
        """
        Case-insensitive lookup

        The name hash narrows the scan to candidates, an exact case-insensitive
        comparison decides between them.

        Returns:
            int: Index of the first matching entry, None if there is none
        """
        nameHash = quickHashI(name)
        for i, candidateHash in enumerate(self._nameHashes):
            if candidateHash == nameHash and equalsI(name, self._entries[i].name):
                return i
        return None

    def _resolveIndex(self, key: EntryKey) -> Optional[int]:
        index = self.getFileIndex(key) if isinstance(key, str) else key
        if index is None or not 0 <= index < len(self._entries):
            return None
        return index

    def _goToEntry(self, entry: EntryRecord) -> bool:
        """
        Position the codec on entry: cached seek token first, lookup by the
        stored name bytes when there is no token or it no longer works
        """
        if entry.seekToken is not None:
            try:
                self._handle.goToFilePos(entry.seekToken)
                return True
            except ZipCodecError as e:
                logger.debug(f"Seek token for {entry.name} unusable, locating by name: {e}")

        try:
            nameBytes = entry.name.encode(self._codePageOf(entry.info))
        except UnicodeEncodeError:
            return False

        try:
            self._handle.locateFile(nameBytes)
            return True
        except ZipCodecError as e:
            logger.debug(f"Cannot locate {entry.name}: {e}")
            return False

    def _isAllocatable(self, size: int) -> bool:
        narrowed = size & ADDRESSABLE_SIZE_MASK
        if narrowed != size:
            return False
        # size + terminator must not wrap around
        if ((narrowed + TERMINATOR_SIZE) & ADDRESSABLE_SIZE_MASK) < TERMINATOR_SIZE:
            return False

        maxEntrySize = self.settings.maxEntrySize
        return not (maxEntrySize and size > maxEntrySize)

    def getFileData(self, key: EntryKey) -> Optional[EntryData]:
        """
        Extract one entry into a fresh buffer

        Args:
            key: Entry index or name (case-insensitive)

        Returns:
            EntryData: Payload plus double NUL terminator, None when the entry is
                       missing, encrypted, oversized, short or fails its CRC check
        """
        if not self.isOpen:
            return None

        index = self._resolveIndex(key)
        if index is None:
            return None

        entry = self._entries[index]
        if not self._goToEntry(entry):
            return None

        try:
            self._handle.openCurrentFile()
        except ZipCodecError as e:
            logger.debug(f"Cannot open entry {entry.name}: {e}")
            return None

        result = None
        size = entry.info.uncompressedSize
        try:
            if not self._isAllocatable(size):
                logger.warning(f"Entry {entry.name} declares an unusable size ({size} bytes)")
            else:
                buffer = bytearray(size + TERMINATOR_SIZE)
                readBytes = self._handle.readCurrentFile(memoryview(buffer)[:size])
                buffer[size] = buffer[size + 1] = 0

                if readBytes != size:
                    logger.warning(f"Short read for {entry.name}: {readBytes} of {size} bytes")
                else:
                    result = EntryData(buffer, size)
        except (ZipCodecError, MemoryError) as e:
            logger.warning(f"Cannot extract {entry.name}: {e}")
            result = None

        try:
            self._handle.closeCurrentFile()
        except CRCMismatchError as e:
            # Content is likely damaged
            logger.warning(f"{e} (expected {e.expected:08x}, got {e.actual:08x})")
            result = None

        return result

    def getFileTime(self, key: EntryKey) -> Optional[datetime.datetime]:
        """
        Returns:
            datetime: UTC modification time of the entry, None if the entry
                      does not exist or its DOS timestamp is invalid
        """
        if not self.isOpen:
            return None

        index = self._resolveIndex(key)
        if index is None:
            return None

        info = self._entries[index].info
        return dosDateTimeToDatetime(info.dosDate, info.dosTime)

    def getComment(self) -> Optional[bytes]:
        """
        Returns:
            bytes: Raw archive comment, None if there is none or it cannot be read
        """
        if not self.isOpen:
            return None

        try:
            comment = self._handle.getGlobalComment(self.commentLength)
        except ZipCodecError as e:
            logger.debug(f"Cannot read archive comment: {e}")
            return None

        if not comment:
            return None
        return comment

    def unzipFile(self, key: EntryKey, destDir: str, destName: Optional[str] = None) -> bool:
        """
        Extract one entry to disk

        Args:
            key: Entry index or name (case-insensitive)
            destDir: Destination directory
            destName: File name under destDir, defaults to the entry name with
                      '/' turned into the host separator

        Directory entries (names ending in '/') are created as directories.

        Returns:
            bool: True on success; False if either extraction or writing failed
        """
        index = self._resolveIndex(key)
        if index is None or not self.isOpen:
            return False

        entry = self._entries[index]
        relPath = destName if destName else archiveNameToLocalPath(entry.name)

        normalized = os.path.normpath(relPath)
        if os.path.isabs(normalized) or normalized.split(os.sep)[0] == os.pardir:
            logger.warning(f"Refusing to extract {entry.name} outside of {destDir}")
            return False

        filePath = os.path.join(destDir, normalized)

        if entry.info.isDir:
            try:
                os.makedirs(filePath, exist_ok=True)
            except OSError as e:
                logger.warning(f"Cannot create {filePath}: {e}")
                return False
            _notify(ZipEvent.entryExtract, archive=self, name=entry.name, path=filePath, size=0)
            return True

        data = self.getFileData(index)
        if data is None:
            return False

        try:
            parent = os.path.dirname(filePath)
            if parent:
                os.makedirs(parent, exist_ok=True)
            with open(filePath, 'wb') as f:
                f.write(memoryview(data.buffer)[:data.size])
        except OSError as e:
            logger.warning(f"Cannot write {filePath}: {e}")
            return False

        _notify(ZipEvent.entryExtract, archive=self, name=entry.name, path=filePath, size=data.size)
        return True


class ArchiveBuilder:
    """
    Collects files and serializes them into a new ZIP container

    Files are only registered by addFile()/addFileFromDir(); nothing is read
    until saveAs(). A failed saveAs() may leave a truncated file behind.
    """

    def __init__(self, settings: SettingsGetter = None):
        self.settings = settings or SettingsGetter.getInstance()
        self.comment = ''
        self._pathsAndNames: List[Tuple[str, str]] = []

    def __len__(self):
        return len(self._pathsAndNames)

    @property
    def files(self) -> Tuple[Tuple[str, str], ...]:
        return tuple(self._pathsAndNames)

    def addFile(self, sourcePath, nameInArchive: Optional[str] = None) -> bool:
        """
        Register a file under an (optional) archive name

        Absolute, platform-specific paths do not belong in an archive, so an
        absolute sourcePath without nameInArchive is stored under its base name.
        A relative sourcePath is used as the name verbatim.

        Returns:
            bool: False (nothing registered) if sourcePath does not exist
        """
        sourcePath = os.fspath(sourcePath)
        if not os.path.exists(sourcePath):
            return False

        if nameInArchive is None:
            if isAbsolutePath(sourcePath):
                nameInArchive = baseName(sourcePath)
            else:
                nameInArchive = sourcePath

        self._pathsAndNames.append((sourcePath, nameInArchive))
        return True

    def addFileFromDir(self, sourcePath, baseDir) -> bool:
        """
        Register a file under its path relative to baseDir

        Returns:
            bool: False if sourcePath does not start with baseDir or does not exist
        """
        sourcePath = os.fspath(sourcePath)
        baseDir = os.fspath(baseDir)
        if not sourcePath.startswith(baseDir):
            return False

        nameInArchive = sourcePath[len(baseDir):]
        if nameInArchive and isSep(nameInArchive[0]):
            nameInArchive = nameInArchive[1:]

        return self.addFile(sourcePath, nameInArchive)

    def _writeEntry(self, writer: ZipWriterHandle, sourcePath: str, nameInArchive: str):
        if os.sep != '/':
            nameInArchive = nameInArchive.replace(os.sep, '/')
        nameBytes = nameInArchive.encode('utf-8')

        with open(sourcePath, 'rb') as f:
            fileData = f.read()
        dosTime, dosDate = unixToDosTime(os.path.getmtime(sourcePath))

        writer.openNewFile(nameBytes, method=DEFLATE, level=self.settings.compressionLevel,
                           dosTime=dosTime, dosDate=dosDate)
        writer.write(fileData)
        writer.closeFile()

    def saveAs(self, destPath) -> bool:
        """
        Write every registered file, in order, into a new archive at destPath

        The first failure stops the run. The container is closed either way.

        Returns:
            bool: True if every file was written and the archive finalized
        """
        if not self._pathsAndNames:
            return False

        try:
            writer = ZipWriterHandle.open(destPath)
        except ZipCodecError as e:
            logger.warning(f"Cannot create archive {destPath}: {e}")
            return False

        comment = self.comment.encode('utf-8') if isinstance(self.comment, str) else bytes(self.comment)

        result = True
        try:
            try:
                for sourcePath, nameInArchive in self._pathsAndNames:
                    self._writeEntry(writer, sourcePath, nameInArchive)
            except (ZipCodecError, OSError, UnicodeEncodeError) as e:
                logger.warning(f"Cannot add {sourcePath} to {destPath}: {e}")
                result = False
        finally:
            try:
                writer.close(comment)
            except ZipCodecError as e:
                logger.warning(f"Cannot finalize archive {destPath}: {e}")
                result = False

        logger.debug(f"Saved {destPath}: {len(self._pathsAndNames)} files, ok={result}")
        _notify(ZipEvent.archiveSave, builder=self, path=os.fspath(destPath), result=result)
        return result
