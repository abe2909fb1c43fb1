#!/usr/bin/env python
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0
#
# PkgProxy - Fetch-and-archive package proxy
# Copyright (C) 2025-2026 PkgProxy contributors
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
import shlex
import shutil

from datetime import timedelta

import bitmath

from pkgproxy.Kernel import Singleton, getLogger
from pkgproxy.Utils import getEnv

# Name of the env var holding the workspace base; the cache root is <base>/src.
WORKSPACE_ENV = getEnv('PKGPROXY_WORKSPACE_ENV', 'GOPATH')

# Zero-length marker whose mtime records the last refresh of a directory.
SENTINEL_NAME = '.go-get-proxy-last'

FRESHNESS_WINDOW = timedelta(seconds=getEnv('PKGPROXY_FRESHNESS_SECONDS', 60))

SOURCE_SUFFIX = getEnv('PKGPROXY_SOURCE_SUFFIX', '.go')
NON_SOURCE_SIZE_LIMIT = bitmath.KiB(10)
FILE_SIZE_LIMIT = bitmath.MiB(1)

DEFAULT_RETRIEVER = 'go get -u'

DEFAULT_LISTEN = ':8080'
LISTEN_FD_PREFIX = 'envfd:'
LISTEN_FD_ENV_PREFIX = 'RUNSIT_PORTFD'

logger = getLogger(__name__)


def _toBytes(size):
    if isinstance(size, bitmath.Bitmath):
        return int(size.bytes)
    return int(size)


# Singleton
class SettingsGetter(Singleton):

    @classmethod
    def getInstance(cls):
        if cls not in cls._instances:
            raise RuntimeError('Get SettingsGetter before initialized it.')
        return cls._instances[cls]

    def initialize(
        self,
        workspace=None,
        freshnessWindow: timedelta = FRESHNESS_WINDOW,
        retriever=None,
        sentinelName=SENTINEL_NAME,
        sourceSuffix=SOURCE_SUFFIX,
        nonSourceSizeLimit=NON_SOURCE_SIZE_LIMIT,
        fileSizeLimit=FILE_SIZE_LIMIT,
    ):
        """Initialize the SettingsGetter; unset values come from the environment."""
        if workspace is None:
            workspace = os.getenv(WORKSPACE_ENV, '')
            if not workspace:
                logger.warning(f"{WORKSPACE_ENV} is not set, caching under the current directory")

        if retriever is None:
            retriever = getEnv('PKGPROXY_RETRIEVER', DEFAULT_RETRIEVER)
        if isinstance(retriever, str):
            retriever = shlex.split(retriever)

        self._workspace = os.path.abspath(workspace)
        self._freshnessWindow = freshnessWindow
        self._retriever = list(retriever)
        self._sentinelName = sentinelName
        self._sourceSuffix = sourceSuffix
        self._nonSourceSizeLimit = _toBytes(nonSourceSizeLimit)
        self._fileSizeLimit = _toBytes(fileSizeLimit)

    @property
    def workspace(self):
        return self._workspace

    @property
    def cacheRoot(self):
        return os.path.join(self._workspace, 'src')

    @property
    def freshnessWindow(self) -> timedelta:
        return self._freshnessWindow

    @property
    def retriever(self):
        return list(self._retriever)

    @property
    def sentinelName(self):
        return self._sentinelName

    @property
    def sourceSuffix(self):
        return self._sourceSuffix

    @property
    def nonSourceSizeLimit(self) -> int:
        return self._nonSourceSizeLimit

    @property
    def fileSizeLimit(self) -> int:
        return self._fileSizeLimit

    def which(self, binary):
        if not binary:
            return None
        return shutil.which(binary)

    def hasRetriever(self):
        """Check whether the retrieval tool can be found on PATH"""
        return bool(self._retriever) and self.which(self._retriever[0]) is not None
