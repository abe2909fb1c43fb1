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

import argparse
import json
import os
import logging
import logging.config

from dataclasses import dataclass
from typing import Optional

from pkgproxy.Kernel import PUBLIC_VERSION, getLogger, configureGlobalLogLevel, LOG_LEVEL_MAPPING
from pkgproxy.Settings import DEFAULT_LISTEN, LISTEN_FD_PREFIX, LISTEN_FD_ENV_PREFIX
from pkgproxy.Utils import flushPrint, getEnv

logger = getLogger(__name__)


class ConfigurationError(Exception):
    """Fatal startup configuration problem; the process cannot serve."""
    pass


@dataclass
class ListenAddress:
    host: str = ''
    port: Optional[int] = None
    fd: Optional[int] = None
    spec: str = DEFAULT_LISTEN

    @property
    def isInherited(self) -> bool:
        return self.fd is not None

    def __str__(self):
        if self.isInherited:
            return f'{self.spec} (fd {self.fd})'
        return f'{self.host}:{self.port}'


def parseListenAddress(spec, environ=None) -> ListenAddress:
    """
    Parse a listen specification.

    Accepted forms:
        8080 or :8080      all interfaces, port 8080
        127.0.0.1:8080     given ip and port
        envfd:NAME         inherited listening socket whose fd number is in RUNSIT_PORTFD_NAME

    Raises:
        ConfigurationError: On malformed ports or a missing/invalid inherited descriptor.
    """
    if environ is None:
        environ = os.environ

    spec = (spec or DEFAULT_LISTEN).strip()

    if spec.startswith(LISTEN_FD_PREFIX):
        name = spec[len(LISTEN_FD_PREFIX):]
        envName = f'{LISTEN_FD_ENV_PREFIX}_{name}'
        fdStr = environ.get(envName, '')
        if not name or not fdStr:
            raise ConfigurationError(f"didn't find named runsit port named {name!r} in environment ({envName})")
        try:
            fd = int(fdStr)
        except ValueError:
            raise ConfigurationError(f"bogus port number {fdStr!r} in environment")
        if fd < 0:
            raise ConfigurationError(f"bogus port number {fdStr!r} in environment")
        return ListenAddress(fd=fd, spec=spec)

    if ':' not in spec:
        spec = ':' + spec

    host, _, portStr = spec.rpartition(':')
    host = host.strip('[]')
    try:
        port = int(portStr)
    except ValueError:
        raise ConfigurationError(f"invalid port {portStr!r} in listen address {spec!r}")
    if not (0 <= port <= 65535):
        raise ConfigurationError(f"port {port} out of range in listen address {spec!r}")

    return ListenAddress(host=host, port=port, spec=spec)


def configureLogging(logLevel):
    """Configure logging level for the application using Kernel's centralized configuration or config file

    Priority order:
    1. logLevel parameter (from --log-level CLI argument)
    2. PKGPROXY_LOGGING_LEVEL environment variable
    3. Default to None (no configuration change)

    Both can be a logging level name (DEBUG, INFO, WARNING, ERROR) or a path to a
    logging configuration JSON file.
    """

    def suppressNoisyLogger():
        logging.getLogger('sentry_sdk').setLevel(logging.INFO)

    if logLevel is None:
        logLevel = getEnv('PKGPROXY_LOGGING_LEVEL', None)

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

        except (json.JSONDecodeError, ValueError, KeyError) as e:
            flushPrint(f"Failed to load logging config from {logLevel}: {e}")
            flushPrint("Falling back to default logging level configuration")

    if logLevel.upper() in LOG_LEVEL_MAPPING:
        configureGlobalLogLevel(LOG_LEVEL_MAPPING[logLevel.upper()])
        logger.info(f"Logging level set to {logLevel}")
    else:
        configureGlobalLogLevel(logging.WARNING)
        logger.warning(f"Invalid logging level '{logLevel}', using WARNING as default")

    suppressNoisyLogger()

    return logLevel


def configureCLIParser():
    """Build the command line parser."""
    parser = argparse.ArgumentParser(
        prog='pkgproxy',
        description='Serve package sources as tar.gz archives, fetching them on demand.',
    )
    parser.add_argument(
        '--listen',
        default=getEnv('PKGPROXY_LISTEN', DEFAULT_LISTEN),
        help=f"port, ip:port, or '{LISTEN_FD_PREFIX}NAME' to listen on (default: {DEFAULT_LISTEN})",
        metavar='SPEC',
    )
    parser.add_argument(
        '--log-level',
        help='Logging level (DEBUG, INFO, WARNING, ERROR) or path to a JSON logging config file',
        metavar='LEVEL',
        dest='logLevel',
    )
    parser.add_argument(
        '--retriever',
        help='Retrieval command; the package path is appended (default: "go get -u")',
        metavar='COMMAND',
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {PUBLIC_VERSION}')
    return parser
