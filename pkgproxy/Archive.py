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
Streams a package directory as a gzip compressed tar archive.

Only the immediate children of the directory are archived. Subdirectories appear as
empty directory entries and are never listed. Every entry is normalized: owned by
root:root (uid/gid 0), mode collapsed to 0755 when any execute bit is set and 0644
otherwise. Output goes to the sink as it is produced; nothing is buffered beyond the
tar record and gzip block sizes.

Example:
    streamer = ArchiveStreamer()
    with open('pkg.tar.gz', 'wb') as f:
        streamer.stream(f, '/home/me/go/src/github.com/user/repo')
"""

import gzip
import os
import stat
import tarfile

from pkgproxy.Kernel import getLogger, ProxyEvent
from pkgproxy.Settings import FILE_SIZE_LIMIT, NON_SOURCE_SIZE_LIMIT, SENTINEL_NAME, SOURCE_SUFFIX, _toBytes
from pkgproxy.Utils import ONE_KB, formatSize

ARCHIVE_CONTENT_TYPE = 'application/x-tar'

EXECUTABLE_MODE = 0o755
REGULAR_MODE = 0o644
EXECUTE_BITS = 0o111

OWNER_NAME = 'root'
OWNER_ID = 0

COPY_CHUNK = 64 * ONE_KB

logger = getLogger(__name__)


class ArchiveEntryError(OSError):
    """An entry could not be represented in the archive (unsupported type, broken symlink)."""
    pass


class _SinkWriter:
    """Forwards writes to the sink until detached; afterwards writes are discarded."""

    def __init__(self, sink):
        self.sink = sink
        self.written = 0
        self.detached = False

    def write(self, data):
        if not self.detached:
            self.sink.write(data)
            self.written += len(data)
        return len(data)

    def flush(self):
        if not self.detached and hasattr(self.sink, 'flush'):
            self.sink.flush()

    def detach(self):
        self.detached = True


class ArchiveStreamer:

    def __init__(
        self,
        sentinelName=SENTINEL_NAME,
        sourceSuffix=SOURCE_SUFFIX,
        nonSourceSizeLimit=NON_SOURCE_SIZE_LIMIT,
        fileSizeLimit=FILE_SIZE_LIMIT,
    ):
        self.sentinelName = sentinelName
        self.sourceSuffix = sourceSuffix
        self.nonSourceSizeLimit = _toBytes(nonSourceSizeLimit)
        self.fileSizeLimit = _toBytes(fileSizeLimit)

    @classmethod
    def fromSettings(cls, settingsGetter):
        return cls(
            sentinelName=settingsGetter.sentinelName,
            sourceSuffix=settingsGetter.sourceSuffix,
            nonSourceSizeLimit=settingsGetter.nonSourceSizeLimit,
            fileSizeLimit=settingsGetter.fileSizeLimit,
        )

    def isIncluded(self, name, st) -> bool:
        """Apply the selection rules to one top-level entry."""
        if name == self.sentinelName:
            return False

        if stat.S_ISREG(st.st_mode):
            if not name.endswith(self.sourceSuffix) and st.st_size > self.nonSourceSizeLimit:
                logger.debug(f"Skipping non-source file {name!r} ({formatSize(st.st_size)})")
                return False
            if st.st_size > self.fileSizeLimit:
                logger.debug(f"Skipping oversized file {name!r} ({formatSize(st.st_size)})")
                return False

        return True

    def listEntries(self, rootDir):
        """
        List the top-level entries of rootDir that belong in the archive.

        Returns:
            list: (name, path, lstat result) tuples in lexical name order
        """
        try:
            with os.scandir(rootDir) as it:
                names = sorted(entry.name for entry in it)
        except (FileNotFoundError, NotADirectoryError) as e:
            # Fresh through an ancestor but never materialized: an empty archive.
            logger.warning(f"Nothing to archive at {rootDir!r}: {e}")
            return []
        except OSError as e:
            logger.error(f"Error listing {rootDir!r}: {e}")
            raise

        entries = []
        for name in names:
            path = os.path.join(rootDir, name)
            try:
                st = os.lstat(path)
            except OSError as e:
                logger.error(f"Error reading {path!r}: {e}")
                raise

            if self.isIncluded(name, st):
                entries.append((name, path, st))
        return entries

    def buildTarInfo(self, name, path, st) -> tarfile.TarInfo:
        """
        Build the normalized archive header for one entry.

        Raises:
            ArchiveEntryError: For sockets, unknown node types and unresolvable symlinks.
        """
        info = tarfile.TarInfo(name)
        info.mtime = int(st.st_mtime)
        mode = st.st_mode

        if stat.S_ISREG(mode):
            info.type = tarfile.REGTYPE
            info.size = st.st_size
        elif stat.S_ISDIR(mode):
            info.type = tarfile.DIRTYPE
        elif stat.S_ISLNK(mode):
            info.type = tarfile.SYMTYPE
            try:
                info.linkname = os.readlink(path)
            except OSError as e:
                raise ArchiveEntryError(f"Unable to read symlink {name!r}: {e}") from e
            if not os.path.exists(path):
                raise ArchiveEntryError(f"Symlink {name!r} points to unresolvable target {info.linkname!r}")
        elif stat.S_ISCHR(mode) or stat.S_ISBLK(mode):
            info.type = tarfile.CHRTYPE if stat.S_ISCHR(mode) else tarfile.BLKTYPE
            info.devmajor = os.major(st.st_rdev)
            info.devminor = os.minor(st.st_rdev)
        elif stat.S_ISFIFO(mode):
            info.type = tarfile.FIFOTYPE
        else:
            raise ArchiveEntryError(f"Unsupported file mode {stat.filemode(mode)} for {name!r}")

        info.uid = info.gid = OWNER_ID
        info.uname = info.gname = OWNER_NAME
        info.mode = EXECUTABLE_MODE if mode & EXECUTE_BITS else REGULAR_MODE
        return info

    def stream(self, sink, rootDir) -> int:
        """
        Write the archive of rootDir to sink.

        Any error aborts the stream; bytes already written stay written, so callers must
        treat a raised error as a truncated, untrustworthy archive. On success both the
        tar trailer and the gzip footer have been written.

        Returns:
            int: Number of archived entries
        """
        writer = _SinkWriter(sink)
        count = 0

        try:
            compressed = gzip.GzipFile(fileobj=writer, mode='wb', mtime=0)
            archive = tarfile.open(fileobj=compressed, mode='w|', format=tarfile.GNU_FORMAT, bufsize=COPY_CHUNK)

            for name, path, st in self.listEntries(rootDir):
                try:
                    info = self.buildTarInfo(name, path, st)
                except ArchiveEntryError as e:
                    logger.error(f"Error making header of {path!r}: {e}")
                    raise

                if info.isreg():
                    with open(path, 'rb') as f:
                        archive.addfile(info, f)
                else:
                    archive.addfile(info)
                count += 1

            archive.close()
            compressed.close()
            writer.flush()
        except Exception:
            # Late finalizers (garbage collection of the layers) must not reach the sink.
            writer.detach()
            raise

        logger.debug(f"Archived {count} entries of {rootDir!r} ({formatSize(writer.written)} compressed)")
        ProxyEvent.packageArchive.trigger(directory=rootDir, entries=count, size=writer.written)
        return count


def streamArchive(sink, rootDir, **options) -> int:
    """Convenience wrapper: stream rootDir to sink with a default-configured ArchiveStreamer."""
    return ArchiveStreamer(**options).stream(sink, rootDir)
