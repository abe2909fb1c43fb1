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
Fetch coordination: turns a package path into an up-to-date local directory.

Only the requested key is coordinated. When the retrieval tool pulls in nested or
dependent packages on its own, those are neither locked nor stamped here; a request for
such a nested key can run its own retrieval concurrently with the one that fetches it.
"""

import os
import posixpath
import subprocess
import threading

from dataclasses import dataclass
from typing import Optional

from pkgproxy.Kernel import getLogger, ProxyEvent
from pkgproxy.Locks import KeyedLock
from pkgproxy.Utils import decodeOutput

logger = getLogger(__name__)


class InvalidKeyError(ValueError):
    """The requested package path is empty, not clean, or escapes the cache root."""
    pass


class RetrievalError(Exception):

    def __init__(self, key, tool, reason, output='', returnCode=None):
        self.key = key
        self.tool = tool
        self.reason = reason
        self.output = output
        self.returnCode = returnCode
        super().__init__(f'Error running {tool} for package "{key}": {reason}\n\nOutput:\n{output}')


@dataclass
class RetrievalResult:
    succeeded: bool
    output: str = ''
    returnCode: Optional[int] = None
    reason: Optional[str] = None


def validateKey(key):
    """
    Check that key is a clean, relative, slash separated package path.

    Raises:
        InvalidKeyError: When key is empty, absolute, redundant or contains '.'/'..'.
    """
    if not key:
        raise InvalidKeyError('empty package path')

    if key.startswith('/') or '\\' in key or '\x00' in key:
        raise InvalidKeyError(f'invalid package path {key!r}')

    if posixpath.normpath(key) != key or any(part in ('.', '..') for part in key.split('/')):
        raise InvalidKeyError(f'package path {key!r} is not clean')

    return key


class Retriever:
    """
    Runs the external retrieval tool as a subprocess, one call per key. The key is
    appended to the command; stdout and stderr are captured together.
    """

    def __init__(self, command):
        if not command:
            raise ValueError('Retriever command must not be empty')
        self.command = list(command)

    @property
    def toolName(self):
        return ' '.join(os.path.basename(part) if i == 0 else part for i, part in enumerate(self.command))

    def __call__(self, key) -> RetrievalResult:
        try:
            completed = subprocess.run(
                self.command + [key],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                check=False,
            )
        except OSError as e:
            return RetrievalResult(False, reason=str(e))

        output = decodeOutput(completed.stdout, throw=False) or ''
        if completed.returncode != 0:
            return RetrievalResult(
                False, output, completed.returncode, reason=f'exit status {completed.returncode}'
            )
        return RetrievalResult(True, output, completed.returncode)


class FetchCoordinator:
    """
    Guarantees at most one in-flight retrieval per key within this process.

    Callers that find the key stale queue on its KeyedLock slot. The owner runs the
    retriever, stamps the sentinel whatever the outcome, and releases the slot; waiters
    then re-check freshness and reuse that result instead of retrieving again. Failures
    are remembered for one freshness window so they are answered without a new attempt.
    """

    def __init__(self, oracle, retriever, locks: KeyedLock = None, toolName=None):
        self.oracle = oracle
        self.retriever = retriever
        self.locks = locks if locks is not None else KeyedLock()
        self.toolName = toolName or getattr(retriever, 'toolName', 'retriever')

        self._failuresLock = threading.Lock()
        self._failures = {}

    @property
    def root(self):
        return self.oracle.root

    def pathFor(self, key):
        validateKey(key)
        return os.path.join(self.root, *key.split('/'))

    def _isExpired(self, failedAt, now):
        return now - failedAt >= self.oracle.window.total_seconds()

    def _cachedFailure(self, key):
        with self._failuresLock:
            entry = self._failures.get(key)
            if entry is None:
                return None

            failedAt, error = entry
            if not self._isExpired(failedAt, self.oracle.clock()):
                return error

            del self._failures[key]
            return None

    def _rememberOutcome(self, key, error, now):
        with self._failuresLock:
            for expiredKey in [k for k, (failedAt, _) in self._failures.items() if self._isExpired(failedAt, now)]:
                del self._failures[expiredKey]

            if error is None:
                self._failures.pop(key, None)
            else:
                self._failures[key] = (now, error)

    def _freshResult(self, key, path):
        error = self._cachedFailure(key)
        if error is not None:
            logger.debug(f"Answering {key!r} with cached failure")
            raise error
        return path

    def ensureFresh(self, key):
        """
        Return the local directory for key, retrieving it first when stale or missing.

        Raises:
            InvalidKeyError: When key is not a clean package path.
            RetrievalError: When the retrieval tool failed, now or within the last window.
        """
        path = self.pathFor(key)
        if self.oracle.isFresh(path):
            return self._freshResult(key, path)

        with self.locks.hold(key):
            # Whoever held the slot before us has just refreshed (or failed) this key.
            if self.oracle.isFresh(path):
                return self._freshResult(key, path)

            return self._retrieve(key, path)

    def _retrieve(self, key, path):
        logger.info(f"Getting package {key!r}...")
        try:
            result = self.retriever(key)
        except Exception as e:
            logger.exception(f"Retriever crashed for package {key!r}")
            result = RetrievalResult(False, reason=str(e))

        error = None
        if not result.succeeded:
            logger.error(f"Get of package {key!r} failed: {result.reason}; output: {result.output}")
            error = RetrievalError(key, self.toolName, result.reason, result.output, result.returnCode)

        # The outcome must be on record before the sentinel makes the key look fresh;
        # both carry the same time so they expire together.
        now = self.oracle.clock()
        self._rememberOutcome(key, error, now)
        self.oracle.stamp(path, now)

        ProxyEvent.packageFetch.trigger(key=key, succeeded=result.succeeded, output=result.output)

        if error is not None:
            raise error

        logger.info(f"Fetched package {key!r}")
        return path
