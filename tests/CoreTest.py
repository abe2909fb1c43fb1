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

import io
import os
import shutil
import socket
import subprocess
import sys
import tarfile
import tempfile
import time
import unittest
from argparse import Namespace
from unittest.mock import patch

import requests

import Core

from pkgproxy.Settings import SettingsGetter

ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

# Stand-in for "go get": writes one source file into $GOPATH/src/<key>.
FAKE_GET = (
    'import os, sys; '
    'd = os.path.join(os.environ["GOPATH"], "src", sys.argv[1]); '
    'os.makedirs(d, exist_ok=True); '
    'open(os.path.join(d, "main.go"), "w").write("package main\\n")'
)


def getFreePort():
    sock = socket.socket()
    sock.bind(('127.0.0.1', 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


class CoreMainTest(unittest.TestCase):

    def setUp(self):
        SettingsGetter.resetInstance()
        self.tempDir = tempfile.mkdtemp()

    def tearDown(self):
        SettingsGetter.resetInstance()
        shutil.rmtree(self.tempDir, ignore_errors=True)

    def testInvalidListenIsFatal(self):
        with patch.dict(os.environ, {'GOPATH': self.tempDir}):
            os.environ.pop('RUNSIT_PORTFD_missing', None)
            self.assertEqual(Core.main(['--listen', 'envfd:missing']), 1)

    def testBuildServerWiresComponents(self):
        settingsGetter = SettingsGetter(workspace=self.tempDir, retriever=[sys.executable, '-c', FAKE_GET])
        args = Namespace(listen='127.0.0.1:0')

        server, listenAddress = Core.buildServer(args, settingsGetter)
        try:
            self.assertEqual(listenAddress.host, '127.0.0.1')
            self.assertEqual(server.coordinator.oracle.root, os.path.join(self.tempDir, 'src'))
            self.assertEqual(server.streamer.sentinelName, settingsGetter.sentinelName)
            self.assertNotEqual(server.port, 0)
        finally:
            server.server_close()


class CoreProcessTest(unittest.TestCase):
    """Runs Core.py as a real process with a fake retrieval tool"""

    def setUp(self):
        self.tempDir = tempfile.mkdtemp()
        self.port = getFreePort()
        self.logPath = os.path.join(self.tempDir, 'proxy.log')
        self.logFile = open(self.logPath, 'w')

        env = dict(os.environ, GOPATH=self.tempDir, PKGPROXY_LOGGING_LEVEL='INFO')
        retriever = f"'{sys.executable}' -c '{FAKE_GET}'"
        self.process = subprocess.Popen(
            [
                sys.executable,
                os.path.join(ROOT_DIR, 'Core.py'), '--listen', f'127.0.0.1:{self.port}', '--retriever', retriever
            ],
            cwd=ROOT_DIR,
            env=env,
            stdout=self.logFile,
            stderr=subprocess.STDOUT,
        )
        self.baseURL = f'http://127.0.0.1:{self.port}'
        self.waitForServer()

    def tearDown(self):
        self.process.terminate()
        try:
            self.process.wait(10)
        except subprocess.TimeoutExpired:
            self.process.kill()
        self.logFile.close()
        shutil.rmtree(self.tempDir, ignore_errors=True)

    def waitForServer(self, timeout=15):
        deadline = time.time() + timeout
        while time.time() < deadline:
            try:
                requests.get(self.baseURL + '/', timeout=1)
                return
            except requests.ConnectionError:
                if self.process.poll() is not None:
                    break
                time.sleep(0.2)

        with open(self.logPath) as f:
            self.fail(f"Proxy did not start:\n{f.read()}")

    def testFetchAndArchive(self):
        response = requests.get(self.baseURL + '/example.com/hello', timeout=30)

        self.assertEqual(response.status_code, 200)
        with tarfile.open(fileobj=io.BytesIO(response.content), mode='r:gz') as archive:
            self.assertEqual(archive.getnames(), ['main.go'])

        self.assertTrue(os.path.isfile(os.path.join(self.tempDir, 'src', 'example.com', 'hello', '.go-get-proxy-last')))

    def testInvalidPath(self):
        response = requests.get(self.baseURL + '/a%2F..%2Fb', timeout=10)

        self.assertEqual(response.status_code, 500)
        self.assertIn('invalid path', response.text)


if __name__ == '__main__':
    unittest.main()
