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

import argparse
import json
import os
import logging
import logging.config
import platform
import sys

from zipkit.Kernel import PUBLIC_VERSION, getLogger, configureGlobalLogLevel, LOG_LEVEL_MAPPING
from zipkit.Archive import ArchiveIndex, ArchiveBuilder
from zipkit.Utils import flushPrint, formatSize, getEnv

logger = getLogger(__name__)


def configureLogging(logLevel):
    """Configure logging level from --log-level or ZIPKIT_LOGGING_LEVEL

    Both can be:
    - A logging level name (DEBUG, INFO, WARNING, ERROR)
    - A path to a logging configuration JSON file
    """

    def suppressNoisyLogger():
        logging.getLogger('sentry_sdk').setLevel(logging.INFO)

    # Priority: CLI argument > environment variable > None (no change)
    if logLevel is None:
        logLevel = getEnv('ZIPKIT_LOGGING_LEVEL', None)

    if logLevel is None:
        suppressNoisyLogger()
        return None

    if os.path.isfile(logLevel):
        try:
            with open(logLevel, 'r') as configFile:
                configDict = json.load(configFile)

            logging.config.dictConfig(configDict)
            logger.info(f"Logging configured from file: {logLevel}")
            suppressNoisyLogger()
            return logLevel

        except (json.JSONDecodeError, OSError, ValueError, KeyError) as e:
            flushPrint(f"Failed to load logging config from {logLevel}: {e}")
            flushPrint("Falling back to default logging level configuration")

    if logLevel.upper() in LOG_LEVEL_MAPPING:
        configureGlobalLogLevel(LOG_LEVEL_MAPPING[logLevel.upper()])
        logger.info(f"Logging level set to {logLevel}")
    else:
        logger.warning(f"Invalid logging level '{logLevel}', using WARNING as default")
        configureGlobalLogLevel(logging.WARNING)

    suppressNoisyLogger()

    return logLevel


def showVersion():
    flushPrint(f"ZipKit v{PUBLIC_VERSION}")
    uname = platform.uname()
    flushPrint(f"Architecture: {uname.system} {uname.release} {uname.machine}")


def configureCLIParser():
    """
    Returns:
        argparse.ArgumentParser: Parser with one subcommand per archive operation
    """
    parser = argparse.ArgumentParser(prog='zipkit', description='Indexed ZIP archive reader and writer')
    parser.add_argument(
        "--log-level",
        dest="logLevel",
        help="Logging level (DEBUG, INFO, WARNING, ERROR) or path to a logging JSON config",
        default=None,
    )
    parser.add_argument("--version", action="store_true", help="Show version information and exit")

    subparsers = parser.add_subparsers(dest="command")

    listParser = subparsers.add_parser("list", help="List entries of an archive")
    listParser.add_argument("archive", metavar="ARCHIVE")

    catParser = subparsers.add_parser("cat", help="Write one entry to stdout")
    catParser.add_argument("archive", metavar="ARCHIVE")
    catParser.add_argument("name", metavar="NAME", help="Entry name (case-insensitive)")

    extractParser = subparsers.add_parser("extract", help="Extract entries into a directory")
    extractParser.add_argument("archive", metavar="ARCHIVE")
    extractParser.add_argument("dest", metavar="DEST", help="Destination directory")
    extractParser.add_argument("names", metavar="NAME", nargs="*", help="Entries to extract (default: all)")

    commentParser = subparsers.add_parser("comment", help="Print the archive comment")
    commentParser.add_argument("archive", metavar="ARCHIVE")

    createParser = subparsers.add_parser("create", help="Create an archive from files")
    createParser.add_argument("archive", metavar="ARCHIVE")
    createParser.add_argument("files", metavar="FILE", nargs="+")
    createParser.add_argument(
        "--base-dir", dest="baseDir", default=None, help="Store files under their path relative to this directory"
    )
    createParser.add_argument("--comment", default=None, help="Archive comment")

    return parser


def _openArchive(path):
    archive = ArchiveIndex(path)
    if not archive.isOpen:
        flushPrint(f"Error: Cannot open archive: {path}")
        archive.close()
        return None
    return archive


def listCommand(args):
    archive = _openArchive(args.archive)
    if archive is None:
        return 1

    with archive:
        for index, entry in enumerate(archive):
            fileTime = archive.getFileTime(index)
            timeStr = fileTime.strftime('%Y-%m-%d %H:%M:%S') if fileTime else '-' * 19
            flushPrint(f"{formatSize(entry.info.uncompressedSize):>10}  {timeStr}  {entry.name}")
        flushPrint(f"{len(archive)} entries")
    return 0


def catCommand(args):
    archive = _openArchive(args.archive)
    if archive is None:
        return 1

    with archive:
        data = archive.getFileData(args.name)
        if data is None:
            flushPrint(f"Error: Cannot extract {args.name}")
            return 1

        out = getattr(sys.stdout, 'buffer', None)
        if out is not None:
            out.write(data.payload)
            out.flush()
        else:
            sys.stdout.write(data.text(errors='replace'))
    return 0


def extractCommand(args):
    archive = _openArchive(args.archive)
    if archive is None:
        return 1

    exitCode = 0
    with archive:
        names = args.names or [entry.name for entry in archive if not entry.info.isDir]
        for name in names:
            if archive.unzipFile(name, args.dest):
                logger.info(f"Extracted {name}")
            else:
                flushPrint(f"Error: Cannot extract {name}")
                exitCode = 1
    return exitCode


def commentCommand(args):
    archive = _openArchive(args.archive)
    if archive is None:
        return 1

    with archive:
        comment = archive.getComment()
        if comment:
            flushPrint(comment.decode('utf-8', errors='replace'))
    return 0


def createCommand(args):
    builder = ArchiveBuilder()
    if args.comment:
        builder.comment = args.comment

    for path in args.files:
        if args.baseDir:
            added = builder.addFileFromDir(path, args.baseDir)
        else:
            added = builder.addFile(path)

        if not added:
            flushPrint(f"Error: Cannot add {path}")
            return 1

    if not builder.saveAs(args.archive):
        flushPrint(f"Error: Cannot write archive {args.archive}")
        return 1

    flushPrint(f"Created {args.archive} with {len(builder)} files")
    return 0


COMMANDS = {
    'list': listCommand,
    'cat': catCommand,
    'extract': extractCommand,
    'comment': commentCommand,
    'create': createCommand,
}


def main(argv=None):
    parser = configureCLIParser()
    args = parser.parse_args(argv)

    configureLogging(args.logLevel)

    if args.version:
        showVersion()
        return 0

    if not args.command:
        parser.print_help()
        return 1

    return COMMANDS[args.command](args)


if __name__ == '__main__':
    sys.exit(main())
