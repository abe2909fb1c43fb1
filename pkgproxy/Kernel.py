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
import json
import logging
import threading

# Error reporting stays disabled unless a SENTRY_DSN is provided.
import sentry_sdk

from pathlib import Path

from signalslot import Signal

from sentry_sdk.integrations.logging import SentryHandler, LoggingIntegration
from sentry_sdk.integrations import atexit as sentryAtexit

PUBLIC_VERSION = '1.2.0'

# Map string levels to logging constants for standard level names
LOG_LEVEL_MAPPING = {'DEBUG': logging.DEBUG, 'INFO': logging.INFO, 'WARNING': logging.WARNING, 'ERROR': logging.ERROR}

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'


def configureGlobalLogLevel(logLevel):
    """
    Configure the global logging level for the application.
    This affects all loggers created via getLogger().

    Args:
        logLevel: Logging level (logging.DEBUG, logging.INFO, etc.)
    """
    rootLogger = logging.getLogger()
    rootLogger.setLevel(logLevel)

    formatter = logging.Formatter(LOG_FORMAT)

    # Add console handler if none exists
    if not rootLogger.handlers:
        consoleHandler = logging.StreamHandler()
        consoleHandler.setLevel(logLevel)
        consoleHandler.setFormatter(formatter)
        rootLogger.addHandler(consoleHandler)
    else:
        for handler in rootLogger.handlers:
            if isinstance(handler, logging.StreamHandler) and not isinstance(handler, SentryHandler):
                handler.setLevel(logLevel)
                handler.setFormatter(formatter)


if os.getenv('PKGPROXY_LOGGING_LEVEL'):
    logLevel = LOG_LEVEL_MAPPING.get(os.getenv('PKGPROXY_LOGGING_LEVEL').upper())
    if logLevel is not None:
        configureGlobalLogLevel(logLevel)


def getLogger(name, version=PUBLIC_VERSION):
    """
    Get a logger with Sentry integration. Sentry is initialized at most once, and only
    when a SENTRY_DSN can be found through SecretGetter.

    Args:
        name: Logger name
        version: Version string for logging context
    """
    try:
        sentryInitialized = False

        if not sentry_sdk.get_client().is_active():
            sentryDsn = SecretGetter.getInstance().get('SENTRY_DSN')

            if sentryDsn:
                # Suppress "sentry is attempting to send pending events..." on exit
                sentryAtexit.default_callback = lambda pending, timeout: None

                sentry_sdk.init(
                    dsn=sentryDsn,
                    release=version,
                    default_integrations=False,
                    integrations=[
                        LoggingIntegration(),
                        sentryAtexit.AtexitIntegration(),
                    ],
                )
                sentryInitialized = True

        logger = logging.getLogger(name)

        if not any(isinstance(h, SentryHandler) for h in logger.handlers):
            syslog = SentryHandler()
            syslog.setFormatter(logging.Formatter('%(asctime)s version[%(version)s] : %(message)s'))
            logger.addHandler(syslog)

        logger = logging.LoggerAdapter(logger, {'version': version or 'unknown'})

        if sentryInitialized:
            logger.debug('Sentry initialized')

        return logger

    except Exception as e:
        fallbackLogger = logging.getLogger(name)

        # If Sentry setup fails, log the error and continue with standard logging
        fallbackLogger.warning(f"Failed to initialize Sentry: {e}")

        return fallbackLogger


class Singleton:
    """
    Thread-safe singleton base class that can be inherited by other classes.
    Subclasses override initialize() instead of __init__.
    """

    _instances = {}
    _lock = threading.Lock()

    def __new__(cls, *args, **kwargs):
        if cls not in cls._instances:
            with cls._lock:
                if cls not in cls._instances:
                    cls._instances[cls] = super().__new__(cls)
        return cls._instances[cls]

    def __init__(self, *args, **kwargs):
        # initialize() runs once for the lifetime of the singleton.
        if not hasattr(self, '_initialized'):
            self.initialize(*args, **kwargs)
            self._initialized = True

    def initialize(self, *args, **kwargs):
        pass

    @classmethod
    def getInstance(cls):
        """
        Static access method for the singleton instance.
        """
        if cls not in cls._instances:
            cls()
        return cls._instances[cls]

    @classmethod
    def resetInstance(cls):
        """Drop the instance so the next construction initializes again. Test suites only."""
        with cls._lock:
            cls._instances.pop(cls, None)


class SecretGetter(Singleton):
    """
    Looks secrets up in the environment first, then in a JSON secret file named by
    PKGPROXY_SECRET_FILE. Found values are cached.
    """

    def initialize(self, secretPath=None):
        self.secretPath = secretPath or os.getenv('PKGPROXY_SECRET_FILE')
        self._cache = {}
        self._secretData = None

    def _loadSecretFile(self):
        if self._secretData is not None:
            return

        self._secretData = {}
        if not self.secretPath or not os.path.exists(self.secretPath):
            return

        try:
            self._secretData = json.loads(Path(self.secretPath).read_text())
        except (json.JSONDecodeError, OSError) as e:
            # Kernel loggers would recurse into getLogger here.
            logging.getLogger(__name__).warning(f"Failed to load secret file {self.secretPath}: {e}")

    def get(self, key: str):
        """
        Get secret value by key with caching.

        Args:
            key: Secret key to retrieve

        Returns:
            str or None: Secret value if found, None otherwise
        """
        if self._cache.get(key):
            return self._cache[key]

        value = os.getenv(key)
        if not value:
            self._loadSecretFile()
            value = self._secretData.get(key)

        if value:
            self._cache[key] = value

        return value


class EventService(Singleton):
    """
    This service provides a mechanism to dispatch events to all components.
    It is implemented as a thread-safe singleton and uses the 'signalslot'
    library to manage signal dispatching.
    """

    def initialize(self):
        self.signals = {}

    def reset(self):
        """
        Clears all registered signals. Should only be used in test suites
        to ensure test isolation.
        """
        for event in list(self.signals):
            self.unregister(event)

    def trigger(self, event, **kwargs):
        """
        Trigger an event, calling all connected observers (slots). Observers receive
        keyword arguments only and must accept **kwargs.
        """
        signalObject = self.signals.get(event)
        if signalObject is not None:
            signalObject.emit(**kwargs)

    def isRegistered(self, event):
        return event in self.signals

    def register(self, event):
        """
        Register a new event by creating a Signal object for it.
        """
        if self.isRegistered(event):
            return False
        self.signals[event] = Signal(threadsafe=True)
        return True

    def unregister(self, event):
        """
        Unregister an event and disconnect all its observers.
        """
        if not self.isRegistered(event):
            return False

        self.signals.pop(event).disconnect_all()
        return True

    def subscribe(self, event, observer):
        if not self.isRegistered(event):
            raise KeyError(f"You must register event '{event}' first.")

        signalObject = self.signals[event]
        if observer not in signalObject._slots:
            signalObject.connect(observer)

    def unsubscribe(self, event, observer):
        signalObject = self.signals.get(event)
        if signalObject is not None and observer in signalObject._slots:
            signalObject.disconnect(observer)


class Event:
    """ Simple Event wrapper"""

    def __init__(self, key):
        self.key = key

        self.eventService = EventService.getInstance()

    def register(self):
        return self.eventService.register(self.key)

    def subscribe(self, observer):
        return self.eventService.subscribe(self.key, observer)

    def unsubscribe(self, observer):
        return self.eventService.unsubscribe(self.key, observer)

    def trigger(self, **kwargs):
        return self.eventService.trigger(self.key, **kwargs)


# Event pattern: RESTful + /[action] (create, update, get, delete, others...)
class ProxyEvent:
    packageFetch = Event('/package/fetch/create')
    packageArchive = Event('/package/archive/get')

    @classmethod
    def registerAll(cls):
        cls.packageFetch.register()
        cls.packageArchive.register()


ProxyEvent.registerAll()
