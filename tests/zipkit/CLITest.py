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
import io
import os
import unittest
from unittest.mock import patch

from tests.ZipTestBase import ZipTestBase
from zipkit.Archive import ArchiveBuilder
from zipkit.CLI import main, configureCLIParser
from zipkit.Kernel import PUBLIC_VERSION


class CLITest(ZipTestBase):
    """Drive the zipkit command line through main()"""

    def setUp(self):
        super().setUp()
        self.sourceDir = os.path.join(self.tempDir, 'src')
        self.firstPath = self.writeFile('src/readme.txt', b'read me first')
        self.secondPath = self.writeFile('src/docs/guide.md', b'# Guide')
        self.archivePath = os.path.join(self.tempDir, 'out.zip')

    def runMain(self, argv):
        with patch('sys.stdout', new_callable=io.StringIO) as stdout:
            exitCode = main(argv)
        return exitCode, stdout.getvalue()

    def createArchive(self):
        exitCode, output = self.runMain([
            'create', self.archivePath, self.firstPath, self.secondPath,
            '--base-dir', self.sourceDir, '--comment', 'cli comment'
        ])
        self.assertEqual(exitCode, 0)
        self.assertIn('with 2 files', output)

    def testCreateAndList(self):
        self.createArchive()

        exitCode, output = self.runMain(['list', self.archivePath])
        self.assertEqual(exitCode, 0)
        self.assertIn('readme.txt', output)
        self.assertIn('docs/guide.md', output)
        self.assertIn('2 entries', output)

    def testCat(self):
        self.createArchive()

        exitCode, output = self.runMain(['cat', self.archivePath, 'DOCS/Guide.md'])
        self.assertEqual(exitCode, 0)
        self.assertEqual(output, '# Guide')

        exitCode, output = self.runMain(['cat', self.archivePath, 'missing.md'])
        self.assertEqual(exitCode, 1)

    def testExtract(self):
        self.createArchive()
        destDir = os.path.join(self.tempDir, 'extracted')

        exitCode, _ = self.runMain(['extract', self.archivePath, destDir])
        self.assertEqual(exitCode, 0)
        self.assertEqual(self.readFile(os.path.join(destDir, 'readme.txt')), b'read me first')
        self.assertEqual(self.readFile(os.path.join(destDir, 'docs', 'guide.md')), b'# Guide')

        exitCode, _ = self.runMain(['extract', self.archivePath, destDir, 'missing.md'])
        self.assertEqual(exitCode, 1)

    def testComment(self):
        self.createArchive()

        exitCode, output = self.runMain(['comment', self.archivePath])
        self.assertEqual(exitCode, 0)
        self.assertEqual(output.strip(), 'cli comment')

    def testCreateWithoutBaseDir(self):
        exitCode, _ = self.runMain(['create', self.archivePath, self.firstPath])
        self.assertEqual(exitCode, 0)

        exitCode, output = self.runMain(['list', self.archivePath])
        self.assertIn('readme.txt', output)
        self.assertIn('1 entries', output)

    def testListShowsTimeOfEachDuplicate(self):
        olderTime = datetime.datetime(2020, 1, 2, 3, 4, 6).timestamp()
        newerTime = datetime.datetime(2022, 5, 6, 7, 8, 10).timestamp()
        builder = ArchiveBuilder()
        builder.addFile(self.writeFile('old.txt', b'old', mtime=olderTime), 'same.txt')
        builder.addFile(self.writeFile('new.txt', b'new', mtime=newerTime), 'same.txt')
        self.assertTrue(builder.saveAs(self.archivePath))

        exitCode, output = self.runMain(['list', self.archivePath])
        self.assertEqual(exitCode, 0)
        for mtime in (olderTime, newerTime):
            timeStr = datetime.datetime.fromtimestamp(mtime, datetime.timezone.utc).strftime('%Y-%m-%d %H:%M:%S')
            self.assertIn(timeStr, output)

    def testCreateFailures(self):
        exitCode, output = self.runMain(['create', self.archivePath, os.path.join(self.tempDir, 'missing.txt')])
        self.assertEqual(exitCode, 1)
        self.assertIn('Cannot add', output)
        self.assertFalse(os.path.exists(self.archivePath))

    def testBadArchive(self):
        badPath = self.writeFile('bad.zip', b'not a zip')
        for command in ('list', 'comment'):
            with self.subTest(command=command):
                exitCode, output = self.runMain([command, badPath])
                self.assertEqual(exitCode, 1)
                self.assertIn('Cannot open archive', output)

    def testVersion(self):
        exitCode, output = self.runMain(['--version'])
        self.assertEqual(exitCode, 0)
        self.assertIn(PUBLIC_VERSION, output)
        self.assertNotIn('http', output)

    def testNoCommand(self):
        exitCode, _ = self.runMain([])
        self.assertEqual(exitCode, 1)

    def testParser(self):
        args = configureCLIParser().parse_args(['--log-level', 'DEBUG', 'extract', 'a.zip', 'dest', 'x', 'y'])
        self.assertEqual(args.logLevel, 'DEBUG')
        self.assertEqual(args.command, 'extract')
        self.assertEqual(args.names, ['x', 'y'])


if __name__ == '__main__':
    unittest.main()
