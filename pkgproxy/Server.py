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

import posixpath
import socket

from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import unquote

from pkgproxy.Archive import ARCHIVE_CONTENT_TYPE
from pkgproxy.CLI import ConfigurationError
from pkgproxy.Fetcher import InvalidKeyError, RetrievalError
from pkgproxy.Kernel import PUBLIC_VERSION, getLogger

# Answered with an empty body so browsers stop asking.
SILENT_PATHS = ('/favicon.ico', '/robots.txt')

PLACEHOLDER_HTML = b'<html><body>go get proxy</body></html>'

logger = getLogger(__name__)


def cleanPath(path):
    """
    Lexically clean an absolute URL path: collapse duplicate slashes, drop '.' segments
    and trailing slashes, resolve '..' without ever rising above '/'.
    """
    if not path:
        return '/'

    cleaned = posixpath.normpath(path)
    if cleaned.startswith('//'): # normpath keeps a POSIX double leading slash
        cleaned = '/' + cleaned.lstrip('/')
    return cleaned


class ProxyHandler(BaseHTTPRequestHandler):
    """
    Single method-agnostic endpoint. The URL path names the package; the response is
    a tar.gz of its directory once it is fresh.
    """

    server_version = f'pkgproxy/{PUBLIC_VERSION}'

    def log_message(self, format, *args):
        """Override to use our logger instead of stderr."""
        logger.debug(f"{self.address_string()} - {format % args}")

    def _requestPath(self):
        # Not urlparse: a leading '//' must stay part of the path, not become a netloc.
        rawPath = self.path.split('?', 1)[0].split('#', 1)[0]
        return unquote(rawPath)

    def _sendBytes(self, payload: bytes, ctype: str = "text/plain; charset=utf-8", status=HTTPStatus.OK):
        self.send_response(status)
        self.send_header("Content-Type", ctype)
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        if self.command != 'HEAD':
            self.wfile.write(payload)

    def _sendError(self, message):
        self._sendBytes(message.encode('utf-8'), status=HTTPStatus.INTERNAL_SERVER_ERROR)

    def handleRequest(self):
        requestPath = self._requestPath()

        if requestPath in SILENT_PATHS:
            self._sendBytes(b'')
            return

        if len(requestPath) < 2:
            self._sendBytes(PLACEHOLDER_HTML, "text/html; charset=utf-8")
            return

        if not requestPath.startswith('/') or cleanPath(requestPath) != requestPath:
            logger.warning(f"invalid requested path {requestPath!r}")
            self._sendError('invalid path\n')
            return

        key = requestPath[1:]
        try:
            path = self.server.coordinator.ensureFresh(key)
        except (InvalidKeyError, RetrievalError) as e:
            self._sendError(str(e))
            return

        # No Content-Length: the archive size is unknown until it is written, so the
        # body ends when the connection closes.
        self.close_connection = True
        self.send_response(HTTPStatus.OK)
        self.send_header("Content-Type", ARCHIVE_CONTENT_TYPE)
        self.end_headers()

        if self.command == 'HEAD':
            return

        try:
            self.server.streamer.stream(self.wfile, path)
        except (BrokenPipeError, ConnectionResetError, ConnectionAbortedError) as e:
            logger.info(f"Client {self.address_string()} disconnected during tar of {path!r}: {e}")
        except OSError as e:
            # Headers are committed; the truncated body is all the client gets.
            logger.error(f"Error generating tar of {path!r}: {e}")

    do_GET = handleRequest
    do_HEAD = handleRequest
    do_POST = handleRequest
    do_PUT = handleRequest
    do_DELETE = handleRequest
    do_PATCH = handleRequest
    do_OPTIONS = handleRequest


class Server(ThreadingHTTPServer):

    request_queue_size = 64
    allow_reuse_address = True
    daemon_threads = True

    def __init__(self, serverAddress, coordinator, streamer, requestHandlerClass=None, inheritedFd=None):
        """
        Args:
            serverAddress: (host, port) to bind; ignored when inheritedFd is given
            coordinator: FetchCoordinator providing fresh package directories
            streamer: ArchiveStreamer writing responses
            requestHandlerClass: Handler class, ProxyHandler by default
            inheritedFd: Descriptor of an already listening socket to adopt instead of binding
        """
        self.coordinator = coordinator
        self.streamer = streamer

        if requestHandlerClass is None:
            requestHandlerClass = ProxyHandler

        host = serverAddress[0] if serverAddress else ''
        if ':' in host:
            self.address_family = socket.AF_INET6

        super().__init__(serverAddress or ('', 0), requestHandlerClass, bind_and_activate=inheritedFd is None)

        if inheritedFd is not None:
            self.adoptSocket(inheritedFd)

    def adoptSocket(self, fd):
        """Replace the unbound socket created by the base class with an inherited one."""
        try:
            adopted = socket.socket(fileno=fd)
        finally:
            self.socket.close()
        self.socket = adopted
        self.address_family = adopted.family

        self.server_address = adopted.getsockname()
        self.server_name = socket.getfqdn(self.server_address[0])
        self.server_port = self.server_address[1]
        self.server_activate()

    @property
    def port(self):
        return self.server_address[1]

    def handle_error(self, request, client_address):
        logger.exception(f"Error handling request from {client_address}")

    def start(self, listenAddress=None):
        logger.info(f"Listened on {str(listenAddress or self.server_address)!r}; starting.")
        self.serve_forever()


def createServer(listenAddress, coordinator, streamer, handlerClass=None):
    """
    Factory function to create a Server bound to (or adopting) the given ListenAddress.

    Raises:
        ConfigurationError: When binding fails or the inherited descriptor is unusable.
    """
    try:
        if listenAddress.isInherited:
            return Server(None, coordinator, streamer, handlerClass, inheritedFd=listenAddress.fd)
        return Server((listenAddress.host, listenAddress.port), coordinator, streamer, handlerClass)
    except OSError as e:
        raise ConfigurationError(f"Listen on {str(listenAddress)!r}: {e}") from e
