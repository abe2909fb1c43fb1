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

import threading

from contextlib import contextmanager

from pkgproxy.Kernel import getLogger

logger = getLogger(__name__)


class _Slot:
    """Single-slot handle shared by every caller currently interested in one key."""

    __slots__ = ('lock', 'users')

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


class KeyedLock:
    """
    Named mutual-exclusion lock keyed by string.

    A registry maps each key to one slot. The registry mutex is held only to look up,
    insert or drop slots, never while a slot is owned, so different keys never wait on
    each other. A slot is dropped as soon as its last user releases it.

    Example:
        locks = KeyedLock()
        with locks.hold('github.com/user/repo'):
            ... # at most one thread per key runs here
    """

    def __init__(self):
        self._mutex = threading.Lock()
        self._slots = {}

    def acquire(self, key):
        """Block until the slot for key is owned by the calling thread."""
        with self._mutex:
            slot = self._slots.get(key)
            if slot is None:
                slot = self._slots[key] = _Slot()
            slot.users += 1

        if not slot.lock.acquire(blocking=False):
            logger.debug(f"Waiting for in-flight work on {key!r}")
            slot.lock.acquire()

    def release(self, key):
        with self._mutex:
            slot = self._slots.get(key)
            if slot is None:
                raise RuntimeError(f"Release of unheld key {key!r}")

            slot.users -= 1
            if slot.users == 0:
                del self._slots[key]

        slot.lock.release()

    @contextmanager
    def hold(self, key):
        self.acquire(key)
        try:
            yield
        finally:
            self.release(key)

    def isHeld(self, key) -> bool:
        with self._mutex:
            return key in self._slots

    def __len__(self):
        with self._mutex:
            return len(self._slots)
