# -*- encoding: utf-8 -*-
"""
`profiles` -- Named, Ordered Lists of Image Filters
===================================================
"""
from logging import getLogger
from threading import Lock

import attr

from mediaprocessing.constants import PROFILES_FOLDER
from mediaprocessing.identifiers import NameRegexChecker, ProfileNamer
from mediaprocessing.mp_exception import ConfigError, UnknownProfile

logger = getLogger(__name__)


@attr.s(slots=True, frozen=True)
class Filter(object):
    """One step of a profile.

    ``state`` is a query-string of the filter's parameters, e.g.
    ``'width=200&height=100&mode=max'``.  It may hold tokens, which are
    replaced when the filter runs.
    """
    category = attr.ib()
    type = attr.ib()
    position = attr.ib(default=0, converter=int)
    state = attr.ib(default='')

    @classmethod
    def from_dict(cls, d):
        missing = [k for k in ('category', 'type') if k not in d]
        if missing:
            raise ConfigError(
                'Filter is missing mandatory parameters: %r' % ','.join(missing)
            )
        return cls(
            category=d['category'],
            type=d['type'],
            position=d.get('position', 0),
            state=d.get('state', ''),
        )


@attr.s(slots=True)
class Profile(object):
    name = attr.ib()
    filters = attr.ib(default=attr.Factory(list), converter=list)

    def ordered_filters(self):
        # sorted() is stable, so equal positions keep declaration order
        return sorted(self.filters, key=lambda f: f.position)


class ProfileService(object):
    """Owns the named profiles.

    Editing or deleting a profile drops everything processed with it: the
    filename cache entries and the files under the profile's output folder.

    The config dictionary MAY contain
     * `name_regex`, a regex profile names must match.
     * one subsection per profile, each with a `filters` list of dicts
       (`category`, `type`, `position`, `state`).
    """

    def __init__(self, config, filename_cache, storage_provider):
        self.config = config or {}
        self.filename_cache = filename_cache
        self.storage_provider = storage_provider
        self._name_checker = NameRegexChecker(self.config.get('name_regex'))
        self._profiles = {}
        self._lock = Lock()

        for name, section in self.config.items():
            if not isinstance(section, dict):
                continue
            filters = [Filter.from_dict(f) for f in section.get('filters', [])]
            self.create_profile(name, filters)

    def get_name_hash_code(self, name):
        return ProfileNamer.name_hash_code(name)

    def get_image_profile_by_name(self, name):
        '''
        Returns:
            Profile or None
        '''
        with self._lock:
            return self._profiles.get(name)

    def list_profiles(self):
        with self._lock:
            return sorted(self._profiles.values(), key=lambda p: p.name)

    def create_profile(self, name, filters=()):
        if not name or not self._name_checker.is_allowed(name):
            raise ConfigError('Invalid profile name: %r' % (name,))
        profile = Profile(name=name, filters=filters)
        with self._lock:
            if name in self._profiles:
                raise ConfigError('A profile named %r already exists' % (name,))
            self._profiles[name] = profile
        logger.debug('Created profile %s with %d filters', name, len(profile.filters))
        return profile

    def update_profile(self, name, filters):
        with self._lock:
            if name not in self._profiles:
                raise UnknownProfile(name)
            profile = Profile(name=name, filters=filters)
            self._profiles[name] = profile
        self._discard_processed(name)
        logger.info('Updated profile %s', name)
        return profile

    def delete_profile(self, name):
        with self._lock:
            if self._profiles.pop(name, None) is None:
                raise UnknownProfile(name)
        self._discard_processed(name)
        logger.info('Deleted profile %s', name)

    def _discard_processed(self, name):
        self.filename_cache.clear_profile(name)
        self.storage_provider.delete_folder(
            self.storage_provider.combine(PROFILES_FOLDER, self.get_name_hash_code(name))
        )
