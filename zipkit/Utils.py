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

from typing import Optional

import bitmath

from zipkit.Kernel import getLogger

ONE_KB = bitmath.KiB(1).bytes
ONE_MB = bitmath.MiB(1).bytes
ONE_GB = bitmath.GiB(1).bytes
ONE_TB = bitmath.TiB(1).bytes

CRC32_POLYNOMIAL = 0x04C11DB7

# Earliest representable DOS timestamp: 1980-01-01 00:00:00
DOS_EPOCH_TIME = 0
DOS_EPOCH_DATE = (1 << 5) | 1

PATH_SEPARATORS = tuple(sep for sep in {'/', os.sep, os.altsep} if sep)

logger = getLogger(__name__)


def flushPrint(text):
    try:
        print(text, flush=True)
    except UnicodeEncodeError:
        # Replace unsupported characters with '?' instead of crashing
        encoding = sys.stdout.encoding or 'utf-8'
        print(text.encode(encoding, errors='replace').decode(encoding), flush=True)


def formatSize(size, decimal=None, plural=None):
    if decimal is None:
        if size < ONE_GB: # Less than 1GB
            decimal = 0
        elif size < ONE_TB: # Between 1GB and 1TB
            decimal = 1
        else: # Greater than 1TB
            decimal = 2

    if plural is None:
        plural = False if size > ONE_KB else True

    sizeStr = bitmath.Byte(size).best_prefix(system=bitmath.SI).format(
        "{value:.%df}{%s}" % (decimal, 'unit_plural' if plural else 'unit')
    )

    if not sizeStr.endswith('Byte') and not sizeStr.endswith('Bytes') and not sizeStr.endswith('Bits'):
        return sizeStr.replace('B', '').upper()
    else:
        return sizeStr.replace('Byte', ' Byte').replace('Bit', ' Byte')


# Helper functions for environment variable configuration
def getEnv(envVar, default):
    """Safely get value from environment variable with automatic type detection based on default"""
    try:
        value = os.getenv(envVar)
        if value is not None:
            if default is None:
                return value

            # Automatically detect type based on default value
            if isinstance(default, bool):
                return value == "True"
            elif isinstance(default, int):
                return int(value)
            elif isinstance(default, float):
                return float(value)
            elif isinstance(default, str):
                return str(value)
            else:
                return type(default)(value)
        return default
    except (ValueError, TypeError):
        return default


def quickHashI(text: str) -> int:
    """
    Variation of CRC-32 for names that are mostly ASCII and should be
    treated case independently.

    Each character is folded to lowercase (ASCII range only), truncated to its
    low 8 bits and fed MSB-first through the CRC-32 polynomial 0x04C11DB7.
    Initial value is 0 and there is no final XOR, so the result is not
    interchangeable with zlib.crc32.

    Args:
        text: Name to hash

    Returns:
        int: 32-bit hash
    """
    crc = 0
    for ch in text:
        code = ord(ch)
        if 0x41 <= code <= 0x5A:
            code += 0x20

        bits = (crc ^ ((code & 0xFF) << 24)) & 0xFF000000
        for _ in range(8):
            if bits & 0x80000000:
                bits = ((bits << 1) ^ CRC32_POLYNOMIAL) & 0xFFFFFFFF
            else:
                bits = (bits << 1) & 0xFFFFFFFF
        crc = ((crc << 8) ^ bits) & 0xFFFFFFFF
    return crc


def equalsI(a: str, b: str) -> bool:
    return a.lower() == b.lower()


def dosDateTimeToDatetime(dosDate: int, dosTime: int) -> Optional[datetime.datetime]:
    """
    Convert a packed DOS date/time pair to an absolute (UTC) datetime

    DOS timestamps carry no zone, they are wall-clock time of the machine that
    wrote the archive. The value is read as local time and then normalized.

    DOS time format (16 bits):
        bits 0-4: seconds / 2 (0-29)
        bits 5-10: minutes (0-59)
        bits 11-15: hours (0-23)

    DOS date format (16 bits):
        bits 0-4: day (1-31)
        bits 5-8: month (1-12)
        bits 9-15: year - 1980 (0-127, representing 1980-2107)

    Returns:
        datetime: timezone-aware UTC datetime, None if the fields are out of range
    """
    year = ((dosDate >> 9) & 0x7F) + 1980
    month = (dosDate >> 5) & 0x0F
    day = dosDate & 0x1F
    hour = (dosTime >> 11) & 0x1F
    minute = (dosTime >> 5) & 0x3F
    second = (dosTime & 0x1F) * 2

    try:
        localTime = datetime.datetime(year, month, day, hour, minute, second)
        return localTime.astimezone(datetime.timezone.utc)
    except (ValueError, OverflowError, OSError):
        return None


def unixToDosTime(timestamp):
    """
    Convert Unix timestamp to DOS time and date format

    Args:
        timestamp: Unix timestamp (seconds since epoch) or None

    Returns:
        tuple: (dosTime, dosDate) - both as 16-bit integers
    """
    if timestamp is None or timestamp <= 0:
        return DOS_EPOCH_TIME, DOS_EPOCH_DATE

    try:
        dt = datetime.datetime.fromtimestamp(timestamp)
    except (ValueError, OverflowError, OSError):
        return DOS_EPOCH_TIME, DOS_EPOCH_DATE

    # DOS date range is 1980-2107
    if dt.year < 1980:
        return DOS_EPOCH_TIME, DOS_EPOCH_DATE
    if dt.year > 2107:
        dt = datetime.datetime(2107, 12, 31, 23, 59, 58)

    dosTime = ((dt.hour & 0x1F) << 11) | ((dt.minute & 0x3F) << 5) | ((dt.second // 2) & 0x1F)
    dosDate = (((dt.year - 1980) & 0x7F) << 9) | ((dt.month & 0x0F) << 5) | (dt.day & 0x1F)

    return dosTime, dosDate


def isSep(ch: str) -> bool:
    return ch in PATH_SEPARATORS


def isAbsolutePath(path: str) -> bool:
    return os.path.isabs(path)


def baseName(path: str) -> str:
    """Final path component, honouring both separators"""
    for sep in PATH_SEPARATORS:
        path = path.rsplit(sep, 1)[-1]
    return path


def archiveNameToLocalPath(name: str) -> str:
    """Rewrite forward slashes of an entry name to the host separator"""
    return name.replace('/', os.sep)
