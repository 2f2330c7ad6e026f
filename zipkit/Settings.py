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

import zlib

from zipkit.Kernel import PUBLIC_VERSION, Singleton, getLogger
from zipkit.Utils import getEnv

# cf. http://www.pkware.com/documents/casestudies/APPNOTE.TXT Appendix D
CP_ZIP = 'cp437'
CP_UTF8 = 'utf-8'

# General purpose bit flags
ENCRYPTED_FLAG = 0x0001  # Bit 0: entry is encrypted
DATA_DESCRIPTOR_FLAG = 0x0008  # Bit 3: sizes/CRC in data descriptor
UTF8_FLAG = 0x0800  # Bit 11: filename and comment UTF-8 encoded

# Codec chunk size (64 KiB) for streamed reads and inflate input
READ_CHUNK_SIZE = 64 * 1024

DEFAULT_COMPRESSION_LEVEL = zlib.Z_DEFAULT_COMPRESSION

# 0 means no ceiling beyond the overflow guard
DEFAULT_MAX_ENTRY_SIZE = 0

logger = getLogger(__name__)


class SettingsGetter(Singleton):
    """
    Runtime configuration. Values come from the environment when set and fall
    back to the module defaults otherwise.
    """

    def initialize(self, **overrides):
        self.readChunkSize = getEnv('ZIPKIT_READ_CHUNK_SIZE', READ_CHUNK_SIZE)
        self.compressionLevel = getEnv('ZIPKIT_COMPRESSION_LEVEL', DEFAULT_COMPRESSION_LEVEL)
        self.maxEntrySize = getEnv('ZIPKIT_MAX_ENTRY_SIZE', DEFAULT_MAX_ENTRY_SIZE)
        self.useSeekTokens = getEnv('ZIPKIT_USE_SEEK_TOKENS', True)

        for key, value in overrides.items():
            if not hasattr(self, key):
                raise AttributeError(f"Unknown setting: {key}")
            setattr(self, key, value)

        if not (-1 <= self.compressionLevel <= 9):
            logger.warning(f"Invalid compression level {self.compressionLevel}, using zlib default")
            self.compressionLevel = DEFAULT_COMPRESSION_LEVEL

        if self.readChunkSize <= 0:
            logger.warning(f"Invalid read chunk size {self.readChunkSize}, using {READ_CHUNK_SIZE}")
            self.readChunkSize = READ_CHUNK_SIZE

        logger.debug(
            f"Settings: chunk={self.readChunkSize}, level={self.compressionLevel}, "
            f"maxEntrySize={self.maxEntrySize}, seekTokens={self.useSeekTokens}"
        )

    def reload(self, **overrides):
        """Re-read the environment. Test suites only."""
        self.initialize(**overrides)

    @property
    def version(self):
        return PUBLIC_VERSION
