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

import locale
import os
import sys

import bitmath
import chardet

from pkgproxy.Kernel import getLogger

ONE_KB = int(bitmath.KiB(1).bytes)
ONE_GB = int(bitmath.GiB(1).bytes)
ONE_TB = int(bitmath.TiB(1).bytes)

logger = getLogger(__name__)

# Tried after utf-8 and the chardet guess; latin-1 accepts any byte string.
_UNICODE_TRY_ENCODINGS = tuple(e for e in (locale.getlocale()[1], 'latin-1') if e)


def decodeOutput(s, encodings=None, throw=True, confidence=0.8):
    """
    Force captured tool output to a str.

    @param s Bytes (or str) as produced by a subprocess.
    @param encodings Extra encodings to try first.
    @param throw Raise exception if it fails to convert string.
    @param confidence Minimum chardet confidence before its guess is tried.
    @return str, or None when nothing decodes and throw is False.
    """
    if isinstance(s, str):
        return s

    if not isinstance(s, (bytes, bytearray)):
        return str(s)

    encodings = list(encodings or []) + ['utf-8']

    result = chardet.detect(bytes(s))
    if result['encoding'] and result['confidence'] > confidence:
        encodings.append(result['encoding'])
    encodings.extend(_UNICODE_TRY_ENCODINGS)

    error = None
    for encoding in encodings:
        try:
            return bytes(s).decode(encoding)
        except (UnicodeDecodeError, LookupError) as e:
            error = e

    if throw and error:
        raise error

    return None


# flush is required when stdout is a pipe (supervisors, containers).
def flushPrint(text):
    try:
        print(text, flush=True)
    except UnicodeEncodeError as e:
        logger.debug(f"UnicodeEncodeError during print, using fallback encoding: {e}, {sys.stdout.encoding=}")
        print(text.encode(sys.stdout.encoding, errors='replace').decode(sys.stdout.encoding), flush=True)


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
        logger.warning(f"Ignoring invalid value {os.getenv(envVar)!r} for {envVar}, using {default!r}")
        return default
