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
import signal
import sys

from pkgproxy.Kernel import getLogger, PUBLIC_VERSION
from pkgproxy.Archive import ArchiveStreamer
from pkgproxy.CLI import ConfigurationError, configureCLIParser, configureLogging, parseListenAddress
from pkgproxy.Fetcher import FetchCoordinator, Retriever
from pkgproxy.Freshness import FreshnessOracle
from pkgproxy.Locks import KeyedLock
from pkgproxy.Server import createServer
from pkgproxy.Settings import SettingsGetter
from pkgproxy.Utils import flushPrint

logger = getLogger(__name__)


def setupGracefulShutdown():
    """Setup signal handlers for graceful shutdown on multiple Ctrl+C"""
    context = {'shutdownInProgress': False}

    def signalHandler(signum, frame):
        if context['shutdownInProgress']:
            # Second Ctrl+C or SIGTERM - force immediate exit
            os._exit(0)
        else:
            context['shutdownInProgress'] = True
            raise KeyboardInterrupt()

    signal.signal(signal.SIGINT, signalHandler)
    signal.signal(signal.SIGTERM, signalHandler)


def buildServer(args, settingsGetter):
    """Wire settings into the freshness oracle, coordinator, streamer and HTTP server."""
    oracle = FreshnessOracle(settingsGetter.cacheRoot, settingsGetter.freshnessWindow, settingsGetter.sentinelName)
    retriever = Retriever(settingsGetter.retriever)
    coordinator = FetchCoordinator(oracle, retriever, KeyedLock())
    streamer = ArchiveStreamer.fromSettings(settingsGetter)

    if not settingsGetter.hasRetriever():
        logger.warning(f"Retrieval tool {settingsGetter.retriever[0]!r} not found on PATH, every fetch will fail")

    listenAddress = parseListenAddress(args.listen)
    return createServer(listenAddress, coordinator, streamer), listenAddress


def main(argv=None):
    parser = configureCLIParser()
    args = parser.parse_args(argv)

    configureLogging(args.logLevel)

    settingsGetter = SettingsGetter(retriever=args.retriever)
    logger.info(f"pkgproxy v{PUBLIC_VERSION} caching under {settingsGetter.cacheRoot!r}")

    try:
        server, listenAddress = buildServer(args, settingsGetter)
    except ConfigurationError as e:
        logger.critical(str(e))
        flushPrint(f'Error: {e}')
        return 1

    try:
        server.start(listenAddress)
    finally:
        server.server_close()

    return 0


if __name__ == '__main__':
    setupGracefulShutdown()
    try:
        sys.exit(main() or 0)
    except KeyboardInterrupt:
        flushPrint('\nExiting on user request (Ctrl+C)...')
        sys.exit(0)
    except Exception as e:
        logger.exception(e)
        flushPrint(f'Serve error: {e}')
        sys.exit(1)
