from collections import OrderedDict
from logging import getLogger
from threading import Lock

logger = getLogger(__name__)


class FileNameCache(object):
    """Remembers where the processed version of a source image was written,
    keyed by profile name and the decoded source path.

    Entries are advisory: the file they point to may have been deleted or
    gone stale since, so callers re-validate against the storage provider.
    Only the n most recently used are kept; after a restart the cache is
    empty and is repopulated from the processed files found in storage.

    Slots:
        size (int): See below.
        _dict (OrderedDict): The map.
        _lock (Lock): The lock.
    """
    __slots__ = ('size', '_dict', '_lock')

    def __init__(self, size=5000):
        """
        Args:
            size (int):
                Max entries before the we start popping (LRU).
        """
        self.size = size
        self._dict = OrderedDict()
        self._lock = Lock()

    def get_file_name(self, profile_name, path):
        '''
        Returns:
            str: the storage path of the processed file, or '' if unknown.
        '''
        with self._lock:
            file_name = self._dict.get((profile_name, path))
            if file_name is None:
                return ''
            self._dict.move_to_end((profile_name, path))
            return file_name

    def update_file_name(self, profile_name, path, file_name):
        if self.size <= 0:
            return
        with self._lock:
            self._dict[(profile_name, path)] = file_name
            self._dict.move_to_end((profile_name, path))
            while len(self._dict) > self.size:
                self._dict.popitem(last=False)
        logger.debug('Cached %s for profile %s, image %s', file_name, profile_name, path)

    def clear_profile(self, profile_name):
        with self._lock:
            stale = [k for k in self._dict if k[0] == profile_name]
            for key in stale:
                del self._dict[key]
        logger.debug('Removed %d cached file names for profile %s', len(stale), profile_name)

    def __contains__(self, key):
        with self._lock:
            return key in self._dict

    def __len__(self):
        with self._lock:
            return len(self._dict)
