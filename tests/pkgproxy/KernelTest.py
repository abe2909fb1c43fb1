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

import json
import os
import tempfile
import unittest
from unittest.mock import patch

from pkgproxy.Kernel import Event, EventService, ProxyEvent, SecretGetter, Singleton


class SingletonTest(unittest.TestCase):

    def testSameInstanceAndSingleInitialization(self):

        class Counter(Singleton):

            def initialize(self, start=0):
                self.value = start

        try:
            first = Counter(start=5)
            second = Counter(start=99)

            self.assertIs(first, second)
            self.assertIs(Counter.getInstance(), first)
            self.assertEqual(second.value, 5)
        finally:
            Counter.resetInstance()

    def testResetInstance(self):

        class Box(Singleton):
            pass

        first = Box.getInstance()
        Box.resetInstance()
        self.assertIsNot(Box.getInstance(), first)
        Box.resetInstance()


class EventServiceTest(unittest.TestCase):
    """
    Test case for the singleton, signalslot-based EventService.
    """

    def setUp(self):
        self.e = EventService.getInstance()
        self.events = []

    def tearDown(self):
        for event in self.events:
            self.e.unregister(event)

    def register(self, event):
        self.events.append(event)
        return self.e.register(event)

    def testIsSingleton(self):
        self.assertIs(EventService.getInstance(), self.e)

    def testRegisterTwice(self):
        self.assertTrue(self.register('/test/register'))
        self.assertFalse(self.e.register('/test/register'))
        self.assertTrue(self.e.isRegistered('/test/register'))

    def testTriggerCallsObservers(self):
        log = []
        self.register('/test/trigger')

        def observer(**kwargs):
            log.append(kwargs['value'])

        self.e.subscribe('/test/trigger', observer)
        self.e.subscribe('/test/trigger', observer) # duplicate is ignored
        self.e.trigger('/test/trigger', value=1)

        self.assertEqual(log, [1])

        self.e.unsubscribe('/test/trigger', observer)
        self.e.trigger('/test/trigger', value=2)
        self.assertEqual(log, [1])

    def testUnregisterDisconnectsObservers(self):
        log = []
        self.register('/test/unregister')
        self.e.subscribe('/test/unregister', lambda **kwargs: log.append(kwargs))

        self.assertTrue(self.e.unregister('/test/unregister'))
        self.e.trigger('/test/unregister', value=1)
        self.e.unsubscribe('/test/unregister', lambda **kwargs: None)

        self.assertEqual(log, [])
        self.assertFalse(self.e.unregister('/test/unregister'))

    def testSubscribeUnregisteredRaises(self):
        with self.assertRaises(KeyError):
            self.e.subscribe('/test/unknown', lambda **kwargs: None)

    def testUnknownTriggerIsIgnored(self):
        self.e.trigger('/test/nobody/listens', value=1)

    def testEventWrapper(self):
        log = []
        event = Event('/test/wrapper')
        self.events.append(event.key)
        self.assertTrue(event.register())

        def observer(**kwargs):
            log.append(kwargs)

        event.subscribe(observer)
        event.trigger(key='k')
        event.unsubscribe(observer)
        event.trigger(key='ignored')

        self.assertEqual(log, [{'key': 'k'}])

    def testProxyEventsAreRegistered(self):
        self.assertTrue(self.e.isRegistered(ProxyEvent.packageFetch.key))
        self.assertTrue(self.e.isRegistered(ProxyEvent.packageArchive.key))


class SecretGetterTest(unittest.TestCase):

    def setUp(self):
        SecretGetter.resetInstance()

    def tearDown(self):
        SecretGetter.resetInstance()

    def testEnvironmentFirst(self):
        with patch.dict(os.environ, {'PKGPROXY_TEST_SECRET': 'from-env'}):
            self.assertEqual(SecretGetter().get('PKGPROXY_TEST_SECRET'), 'from-env')

    def testSecretFile(self):
        with tempfile.NamedTemporaryFile('w', suffix='.json', delete=False) as f:
            json.dump({'PKGPROXY_TEST_SECRET_FILE_ONLY': 'from-file'}, f)
        try:
            getter = SecretGetter(secretPath=f.name)
            self.assertEqual(getter.get('PKGPROXY_TEST_SECRET_FILE_ONLY'), 'from-file')
            self.assertIsNone(getter.get('PKGPROXY_TEST_SECRET_ABSENT'))
        finally:
            os.remove(f.name)

    def testBrokenSecretFile(self):
        with tempfile.NamedTemporaryFile('w', suffix='.json', delete=False) as f:
            f.write('{not json')
        try:
            self.assertIsNone(SecretGetter(secretPath=f.name).get('PKGPROXY_TEST_SECRET_ABSENT'))
        finally:
            os.remove(f.name)


if __name__ == '__main__':
    unittest.main()
