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

import os
import logging
import threading

# Error reporting is disabled unless SENTRY_DSN is set explicitly.
import sentry_sdk

from signalslot import Signal

from sentry_sdk.integrations.logging import SentryHandler, LoggingIntegration
from sentry_sdk.integrations import atexit as sentryAtexit

PUBLIC_VERSION = '1.2.0'

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'

# Map string levels to logging constants for standard level names
LOG_LEVEL_MAPPING = {'DEBUG': logging.DEBUG, 'INFO': logging.INFO, 'WARNING': logging.WARNING, 'ERROR': logging.ERROR}


def configureGlobalLogLevel(logLevel):
    """
    Set the root logger level and route console output through LOG_FORMAT.
    Loggers from getLogger() propagate to the root, so this covers all of them.
    """
    rootLogger = logging.getLogger()
    rootLogger.setLevel(logLevel)

    consoleHandlers = [h for h in rootLogger.handlers if isinstance(h, logging.StreamHandler)]
    if not consoleHandlers:
        consoleHandlers = [logging.StreamHandler()]
        rootLogger.addHandler(consoleHandlers[0])

    formatter = logging.Formatter(LOG_FORMAT)
    for handler in consoleHandlers:
        handler.setLevel(logLevel)
        handler.setFormatter(formatter)


_envLogLevel = LOG_LEVEL_MAPPING.get((os.getenv('ZIPKIT_LOGGING_LEVEL') or '').upper())
if _envLogLevel is not None:
    configureGlobalLogLevel(_envLogLevel)


def _startSentry(version):
    """Initialize Sentry once, and only when SENTRY_DSN is present"""
    dsn = os.getenv('SENTRY_DSN')
    if not dsn or sentry_sdk.Hub.current.client:
        return False

    # Suppress "sentry is attempting to send pending events..." at exit
    sentryAtexit.default_callback = lambda pending, timeout: None

    sentry_sdk.init(
        dsn=dsn,
        release=version,
        default_integrations=False,
        integrations=[LoggingIntegration(), sentryAtexit.AtexitIntegration()],
    )
    return True


def getLogger(name, version=PUBLIC_VERSION):
    """
    Module logger with a Sentry handler attached. The handler stays inert
    until Sentry is initialized, which only happens when SENTRY_DSN is set.

    Args:
        name: Logger name, usually __name__
        version: Release reported with every record

    Returns:
        logging.LoggerAdapter: Adapter adding 'version' to each record
    """
    logger = logging.getLogger(name)

    try:
        sentryStarted = _startSentry(version)
    except Exception as e:
        logger.warning(f"Failed to initialize Sentry: {e}")
        return logger

    if not any(isinstance(h, SentryHandler) for h in logger.handlers):
        logger.addHandler(SentryHandler())

    adapter = logging.LoggerAdapter(logger, {'version': version or 'unknown'})
    if sentryStarted:
        adapter.debug('Sentry initialized')
    return adapter


class Singleton:
    """
    One instance per subclass. initialize() runs on first construction only,
    later constructions return the same object untouched.
    """

    _instances = {}
    _lock = threading.Lock()

    def __new__(cls, *args, **kwargs):
        with cls._lock:
            instance = cls._instances.get(cls)
            if instance is None:
                instance = super().__new__(cls)
                instance._initialized = False
                cls._instances[cls] = instance
        return instance

    def __init__(self, *args, **kwargs):
        if not self._initialized:
            self.initialize(*args, **kwargs)
            self._initialized = True

    def initialize(self, *args, **kwargs):
        pass

    @classmethod
    def getInstance(cls):
        instance = cls._instances.get(cls)
        return instance if instance is not None else cls()


class EventService(Singleton):
    """
    Named events, one signalslot Signal each. Observers are callables that
    accept keyword arguments only.
    """

    def initialize(self):
        self._signals = {}

    def reset(self):
        """Drop every event and its observers. Test suites only."""
        self._signals.clear()

    def isRegistered(self, key):
        return key in self._signals

    def register(self, key):
        if key in self._signals:
            return False
        self._signals[key] = Signal()
        return True

    def subscribe(self, key, observer):
        """
        Raises:
            KeyError: If the event was never registered
        """
        if key not in self._signals:
            raise KeyError(f"Event '{key}' is not registered")
        self._signals[key].connect(observer)

    def unsubscribe(self, key, observer):
        signal = self._signals.get(key)
        if signal is not None and signal.is_connected(observer):
            signal.disconnect(observer)

    def trigger(self, key, **kwargs):
        signal = self._signals.get(key)
        if signal is not None:
            signal.emit(**kwargs)


class Event:
    """Handle on one EventService key"""

    def __init__(self, key):
        self.key = key

    @property
    def eventService(self):
        return EventService.getInstance()

    def register(self):
        return self.eventService.register(self.key)

    def subscribe(self, observer):
        self.eventService.subscribe(self.key, observer)

    def unsubscribe(self, observer):
        self.eventService.unsubscribe(self.key, observer)

    def trigger(self, **kwargs):
        self.eventService.trigger(self.key, **kwargs)


class ZipEvent:
    archiveOpen = Event('/archive/open')
    entryExtract = Event('/archive/entry/extract')
    archiveSave = Event('/archive/save')

    @classmethod
    def registerAll(cls):
        for event in (cls.archiveOpen, cls.entryExtract, cls.archiveSave):
            event.register()


ZipEvent.registerAll()
