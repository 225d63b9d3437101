# -*- encoding: utf-8 -*-

import errno
import logging
import os
import shutil
import threading
import uuid
from contextlib import contextmanager

from mediaprocessing.constants import COPY_BUFFER_SIZE, TICKS_EPOCH
from mediaprocessing.mp_exception import ConfigError


logger = logging.getLogger(__name__)


def mkdir_p(path):
    """Create a directory if it doesn't already exist."""
    try:
        os.makedirs(path)
    except OSError as err:
        if err.errno == errno.EEXIST:
            pass
        else:
            raise


def safe_rename(src, dst):
    """Rename a file from ``src`` to ``dst``.

    We use a custom version rather than the standard library because we
    have two requirements:

    *   Moves must be atomic.  Otherwise a request may be handed a partially
        written profile image.  ``shutil.move()`` is not atomic.

        Several threads (or machines sharing a network store) may write
        the same profile output at once, so atomicity is required to ensure
        that readers never pick up a half-saved file.

    *   Moves must work across filesystems.  Often temp directories and the
        storage root live on different filesystems.  ``os.rename()`` can
        throw errors if run across filesystems.

    So we try ``os.rename()``, but if we detect a cross-filesystem copy, we
    switch to ``shutil.copyfile()`` with some wrappers to make it atomic.
    """
    logger.debug('Renaming %r to %r', src, dst)
    try:
        os.replace(src, dst)
    except OSError as err:
        logger.debug('Calling os.replace(%r, %r) failed with %r', src, dst, err)

        if err.errno == errno.EXDEV:
            # Copy `<src>` next to the target as `<dst>.<ID>.tmp`; the UUID
            # keeps concurrent writers from overlapping in their tmp copies.
            mole_id = uuid.uuid4()
            tmp_dst = shutil.copyfile(src, '%s.%s.tmp' % (dst, mole_id))

            os.replace(tmp_dst, dst)
            os.unlink(src)
        else:
            raise


def copy_stream(src, dst, buffer_size=COPY_BUFFER_SIZE):
    """Copy everything from ``src`` to ``dst`` in ``buffer_size`` chunks.

    ``src`` is rewound first if it supports seeking.

    Returns:
        int: the number of bytes written.
    """
    if src.seekable():
        src.seek(0)
    written = 0
    while True:
        chunk = src.read(buffer_size)
        if not chunk:
            break
        dst.write(chunk)
        written += len(chunk)
    return written


def to_ticks(dt):
    """Express an aware datetime as 100ns ticks since 0001-01-01 UTC."""
    delta = dt - TICKS_EPOCH
    return (delta.days * 86400 + delta.seconds) * 10 ** 7 + delta.microseconds * 10


class KeyedLock(object):
    """A map of locks, one per key, created on demand.

    Holding the lock for one key never blocks callers using another key.
    Entries are reference counted and dropped once nobody holds or waits on
    them, so the map doesn't grow with every path ever seen.

    This only serializes threads within one process.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._locks = {}

    def __len__(self):
        with self._lock:
            return len(self._locks)

    @contextmanager
    def __call__(self, key):
        with self._lock:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.Lock(), 0]
            entry[1] += 1

        try:
            with entry[0]:
                yield
        finally:
            with self._lock:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]


def import_class(qname):
    '''Imports a class AND returns it (the class, not an instance).
    '''
    module_name = '.'.join(qname.split('.')[:-1])
    class_name = qname.split('.')[-1]
    try:
        module = __import__(module_name, fromlist=[class_name])
        klass = getattr(module, class_name)
    except (ImportError, AttributeError, ValueError) as err:
        raise ConfigError('Could not load %r: %s' % (qname, err))
    logger.debug('Imported %s', qname)
    return klass
