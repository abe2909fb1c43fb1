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

"""
Freshness checks for cached package directories.

A directory is fresh when it, or any ancestor strictly below the cache root, holds a
sentinel file modified less than one freshness window ago. Retrievals fetch whole
repositories, so a sentinel stamped on an ancestor covers every nested package.
"""

import os
import time

from datetime import timedelta

from pkgproxy.Kernel import getLogger

logger = getLogger(__name__)


class FreshnessOracle:

    def __init__(self, root, window: timedelta, sentinelName, clock=time.time):
        """
        Args:
            root: Cache root; its own sentinel is never consulted
            window: Maximum sentinel age that still counts as fresh (exclusive)
            sentinelName: File name of the marker inside each directory
            clock: Callable returning the current epoch time, replaceable in tests
        """
        self.root = os.path.abspath(root)
        self.window = window
        self.sentinelName = sentinelName
        self.clock = clock

    def _isBelowRoot(self, directory):
        if directory == self.root:
            return False
        try:
            return os.path.commonpath([self.root, directory]) == self.root
        except ValueError:
            return False

    def sentinelPath(self, directory):
        return os.path.join(directory, self.sentinelName)

    def isFresh(self, path) -> bool:
        topDir = current = os.path.abspath(path)
        now = self.clock()
        windowSeconds = self.window.total_seconds()

        while self._isBelowRoot(current):
            try:
                modified = os.stat(self.sentinelPath(current)).st_mtime
            except OSError:
                modified = None

            if modified is not None and now - modified < windowSeconds:
                logger.debug(f"isFresh({topDir!r}) ... {current!r} = True")
                return True

            current = os.path.dirname(current)

        logger.debug(f"isFresh({topDir!r}) ... {current!r} = False")
        return False

    def stamp(self, directory, when=None):
        """
        Recreate the sentinel in directory so it records "refreshed now", or the epoch
        time when if given. Missing directories are created. Failures are logged, never
        raised.
        """
        sentinel = self.sentinelPath(directory)
        try:
            os.makedirs(directory, exist_ok=True)
            try:
                os.remove(sentinel)
            except FileNotFoundError:
                pass
            with open(sentinel, 'wb'):
                pass
            if when is not None:
                os.utime(sentinel, (when, when))
        except OSError as e:
            logger.warning(f"Unable to stamp {sentinel!r}: {e}")
