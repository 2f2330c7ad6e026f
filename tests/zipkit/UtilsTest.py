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

import datetime
import os
import unittest
from unittest.mock import patch

from zipkit.Utils import (
    formatSize, getEnv, quickHashI, equalsI, dosDateTimeToDatetime, unixToDosTime, baseName, isSep,
    archiveNameToLocalPath, DOS_EPOCH_TIME, DOS_EPOCH_DATE, ONE_KB, ONE_MB
)


class QuickHashTest(unittest.TestCase):
    """Test cases for the case-insensitive name hash."""

    def testKnownValues(self):
        self.assertEqual(quickHashI(''), 0)
        # A single byte hashes to its CRC table entry
        self.assertEqual(quickHashI('\x01'), 0x04C11DB7)
        self.assertEqual(quickHashI('\x02'), 0x09823B6E)
        # CRC-32/CKSUM check value without its final XOR
        self.assertEqual(quickHashI('123456789'), 0x765E7680 ^ 0xFFFFFFFF)

    def testCaseInsensitive(self):
        self.assertEqual(quickHashI('Foo.TXT'), quickHashI('foo.txt'))
        self.assertEqual(quickHashI('META-INF/Container.xml'), quickHashI('meta-inf/container.XML'))
        self.assertNotEqual(quickHashI('foo.txt'), quickHashI('foo.txu'))

    def testOnlyAsciiIsFolded(self):
        self.assertNotEqual(quickHashI('É'), quickHashI('é'))

    def testNonAsciiIsTruncated(self):
        # U+0161 keeps only its low byte 0x61 ('a')
        self.assertEqual(quickHashI('š'), quickHashI('a'))

    def testStable(self):
        self.assertEqual(quickHashI('chapter1.html'), quickHashI('chapter1.html'))
        self.assertLessEqual(quickHashI('some/long/path/name.xhtml'), 0xFFFFFFFF)

    def testEqualsI(self):
        self.assertTrue(equalsI('Foo.txt', 'FOO.TXT'))
        self.assertFalse(equalsI('foo.txt', 'foo.tx'))


class DosTimeTest(unittest.TestCase):
    """Test cases for DOS date/time conversion."""

    def testDosDateTimeToDatetime(self):
        dosDate = ((2020 - 1980) << 9) | (5 << 5) | 17
        dosTime = (13 << 11) | (45 << 5) | (30 // 2)

        result = dosDateTimeToDatetime(dosDate, dosTime)

        expected = datetime.datetime(2020, 5, 17, 13, 45, 30).astimezone(datetime.timezone.utc)
        self.assertEqual(result, expected)
        self.assertEqual(result.tzinfo, datetime.timezone.utc)

    def testInvalidFieldsGiveNone(self):
        # Month and day 0 do not exist
        self.assertIsNone(dosDateTimeToDatetime(0, 0))
        # Hour 31
        self.assertIsNone(dosDateTimeToDatetime(DOS_EPOCH_DATE, 31 << 11))

    def testUnixToDosTimeRoundTrip(self):
        localTime = datetime.datetime(2021, 3, 4, 5, 6, 8)
        dosTime, dosDate = unixToDosTime(localTime.timestamp())

        self.assertEqual(dosDateTimeToDatetime(dosDate, dosTime), localTime.astimezone(datetime.timezone.utc))

    def testOddSecondsAreTruncated(self):
        localTime = datetime.datetime(2021, 3, 4, 5, 6, 9)
        dosTime, dosDate = unixToDosTime(localTime.timestamp())

        self.assertEqual(dosTime & 0x1F, 4)

    def testOutOfRangeTimestamps(self):
        self.assertEqual(unixToDosTime(None), (DOS_EPOCH_TIME, DOS_EPOCH_DATE))
        self.assertEqual(unixToDosTime(0), (DOS_EPOCH_TIME, DOS_EPOCH_DATE))
        self.assertEqual(unixToDosTime(datetime.datetime(1975, 6, 1).timestamp()), (DOS_EPOCH_TIME, DOS_EPOCH_DATE))


class PathHelpersTest(unittest.TestCase):

    def testBaseName(self):
        self.assertEqual(baseName('/home/user/report.pdf'), 'report.pdf')
        self.assertEqual(baseName('report.pdf'), 'report.pdf')
        self.assertEqual(baseName('dir/'), '')

    def testIsSep(self):
        self.assertTrue(isSep('/'))
        self.assertFalse(isSep('a'))
        self.assertEqual(isSep('\\'), os.sep == '\\' or os.altsep == '\\')

    def testArchiveNameToLocalPath(self):
        self.assertEqual(archiveNameToLocalPath('a/b/c.txt'), os.path.join('a', 'b', 'c.txt'))


class GetEnvTest(unittest.TestCase):

    def testTypesFollowDefault(self):
        with patch.dict(os.environ, {'ZIPKIT_TEST_INT': '42', 'ZIPKIT_TEST_BOOL': 'False', 'ZIPKIT_TEST_STR': 'x'}):
            self.assertEqual(getEnv('ZIPKIT_TEST_INT', 1), 42)
            self.assertIs(getEnv('ZIPKIT_TEST_BOOL', True), False)
            self.assertEqual(getEnv('ZIPKIT_TEST_STR', 'y'), 'x')
            self.assertEqual(getEnv('ZIPKIT_TEST_STR', None), 'x')

    def testInvalidValueFallsBack(self):
        with patch.dict(os.environ, {'ZIPKIT_TEST_INT': 'many'}):
            self.assertEqual(getEnv('ZIPKIT_TEST_INT', 7), 7)

    def testMissingUsesDefault(self):
        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop('ZIPKIT_TEST_MISSING', None)
            self.assertEqual(getEnv('ZIPKIT_TEST_MISSING', 3), 3)


class FormatSizeTest(unittest.TestCase):

    def testUnits(self):
        self.assertIn('Byte', formatSize(0))
        self.assertIn('Bytes', formatSize(512))
        self.assertIn('K', formatSize(ONE_KB * 2))
        self.assertIn('M', formatSize(ONE_MB * 3))


if __name__ == '__main__':
    unittest.main()
