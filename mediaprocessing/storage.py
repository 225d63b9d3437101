"""
`storage` -- Store Media Files and Map Them to Public URLs
==========================================================
"""
from contextlib import contextmanager
from datetime import datetime, timezone
from logging import getLogger
import os
import posixpath
import shutil
import tempfile
from urllib.parse import quote, unquote, urlsplit

from mediaprocessing.mp_exception import ConfigError, StorageException
from mediaprocessing.utils import mkdir_p, safe_rename


logger = getLogger(__name__)


class StorageFile(object):
    """A file held by a storage provider.

    Slots:
        storage_path (str): the path relative to the storage root
        fp (str): the absolute path on the file system
    """
    __slots__ = ('storage_path', 'fp')

    def __init__(self, storage_path, fp):
        self.storage_path = storage_path
        self.fp = fp

    def get_path(self):
        return self.storage_path

    def get_name(self):
        return posixpath.basename(self.storage_path)

    def get_size(self):
        return os.path.getsize(self.fp)

    @property
    def last_modified(self):
        '''
        Returns:
            datetime: the UTC time the file was last written.
        '''
        return datetime.fromtimestamp(os.path.getmtime(self.fp), tz=timezone.utc)

    def open_read(self):
        return open(self.fp, 'rb')

    @contextmanager
    def open_write(self):
        """Yield a writable binary file that replaces this file on close.

        Content is written to a temporary file in the target directory and
        renamed into place, so readers never see a partial file.  Nothing is
        replaced if the block raises.
        """
        target_dp = os.path.dirname(self.fp)
        mkdir_p(target_dp)
        tmp_file = tempfile.NamedTemporaryFile(
            dir=target_dp,
            prefix='.%s.' % os.path.basename(self.fp),
            suffix='.tmp',
            delete=False
        )
        try:
            with tmp_file:
                yield tmp_file
        except BaseException:
            os.unlink(tmp_file.name)
            raise
        safe_rename(tmp_file.name, self.fp)


class _AbstractStorageProvider(object):

    def __init__(self, config):
        self.config = config

    def combine(self, *paths):
        cn = self.__class__.__name__
        raise NotImplementedError('combine() not implemented for %s' % (cn,))

    def file_exists(self, path):
        cn = self.__class__.__name__
        raise NotImplementedError('file_exists() not implemented for %s' % (cn,))

    def get_file(self, path):
        cn = self.__class__.__name__
        raise NotImplementedError('get_file() not implemented for %s' % (cn,))

    def open_or_create(self, path):
        cn = self.__class__.__name__
        raise NotImplementedError('open_or_create() not implemented for %s' % (cn,))

    def get_public_url(self, path):
        cn = self.__class__.__name__
        raise NotImplementedError('get_public_url() not implemented for %s' % (cn,))

    def get_storage_path(self, url):
        """
        Given a public URL, return the storage path it refers to, or None if
        the URL isn't served by this provider.
        """
        cn = self.__class__.__name__
        raise NotImplementedError('get_storage_path() not implemented for %s' % (cn,))

    def delete_folder(self, path):
        cn = self.__class__.__name__
        raise NotImplementedError('delete_folder() not implemented for %s' % (cn,))


class FileSystemStorageProvider(_AbstractStorageProvider):
    """
    Keeps media under a single directory on the local file system.

    The config dictionary MUST contain
     * `root_dp`, the absolute path of the storage root.

    The config dictionary MAY contain
     * `public_url`, the URL prefix media is served from (default `/media/`).
    """

    def __init__(self, config):
        super(FileSystemStorageProvider, self).__init__(config)
        if 'root_dp' not in self.config:
            raise ConfigError('storage.root_dp is required for %s' % (self.__class__.__name__,))
        self.root_dp = os.path.realpath(self.config['root_dp'])
        public_url = self.config.get('public_url', '/media/')
        if not public_url.endswith('/'):
            public_url += '/'
        self.public_url = public_url
        mkdir_p(self.root_dp)
        logger.debug('Storage root is %s, served from %s', self.root_dp, self.public_url)

    def _map_storage(self, path):
        fp = os.path.realpath(os.path.join(self.root_dp, path.lstrip('/')))
        if fp != self.root_dp and not fp.startswith(self.root_dp + os.sep):
            raise StorageException('Path is outside the storage root: %r' % (path,))
        return fp

    def combine(self, *paths):
        parts = [p.strip('/') for p in paths if p]
        return '/'.join(p for p in parts if p)

    def file_exists(self, path):
        try:
            return os.path.isfile(self._map_storage(path))
        except StorageException:
            return False

    def get_file(self, path):
        fp = self._map_storage(path)
        if not os.path.isfile(fp):
            raise StorageException('File %r does not exist' % (path,))
        return StorageFile(path, fp)

    def open_or_create(self, path):
        fp = self._map_storage(path)
        mkdir_p(os.path.dirname(fp))
        return StorageFile(path, fp)

    def get_public_url(self, path):
        return self.public_url + quote(path.lstrip('/'))

    def get_storage_path(self, url):
        url = urlsplit(url)._replace(query='', fragment='').geturl()
        if url.startswith(self.public_url):
            return unquote(url[len(self.public_url):])
        # absolute (http://...) and app-relative (~/...) urls aren't ours
        if '://' in url or url.startswith('~'):
            return None
        return unquote(url).lstrip('/')

    def delete_folder(self, path):
        fp = self._map_storage(path)
        if os.path.isdir(fp):
            shutil.rmtree(fp)
            logger.info('Deleted folder %s', fp)
