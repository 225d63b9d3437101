# -*- encoding: utf-8
"""
Utilities for naming processed images.
"""

import hashlib
import posixpath
import re
from urllib.parse import unquote_plus


class NameRegexChecker(object):
    """
    Allows a user to specify a regex that matches all profile names.

    Names that don't match are rejected when a profile is created, since
    they end up in public URLs.
    """
    def __init__(self, name_regex):
        if name_regex is not None:
            self.name_regex = re.compile(name_regex)
        else:
            self.name_regex = None

    def is_allowed(self, name):
        if self.name_regex is None:
            return True
        else:
            return bool(self.name_regex.match(name))


class ProfileNamer(object):
    """
    Provides the names of processed images based on the profile and the
    source path.
    """

    @staticmethod
    def name_hash_code(name):
        """
        Returns a short, stable hash of ``name``, safe to use as a directory
        name.
        """
        return hashlib.md5(name.encode('utf8')).hexdigest()[:8]

    @staticmethod
    def decode_path(path):
        """
        Source paths are public URLs, so they may be url-encoded.  The
        decoded form is what the filename cache is keyed on.
        """
        return unquote_plus(path)

    @staticmethod
    def split_path(path):
        """
        Returns ``(location, filename)`` where ``location`` keeps its
        trailing slash, e.g. ``'/media/img/a.jpg'`` gives
        ``('/media/img/', 'a.jpg')``.
        """
        filename = posixpath.basename(path)
        return path[:len(path) - len(filename)], filename
