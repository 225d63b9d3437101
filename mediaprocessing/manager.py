"""
`manager` -- Resolve Image Profile URLs
=======================================
"""
from contextlib import closing
from io import BytesIO
from logging import getLogger
from urllib.parse import urljoin

import requests

from mediaprocessing.constants import IMAGE_PART, PROFILES_FOLDER
from mediaprocessing.filters import FilterContext, parse_state
from mediaprocessing.identifiers import ProfileNamer
from mediaprocessing.mp_exception import (
    FilterException,
    ImageUnavailable,
    StorageException,
)
from mediaprocessing.profiles import Filter
from mediaprocessing.utils import KeyedLock, copy_stream, to_ticks

logger = getLogger(__name__)


class ImageProfileManager(object):
    """Turns a source image and a profile name into the public URL of the
    processed image, processing it first if needed.

    Processed images are written to ``_Profiles/<profile hash>/<folder
    hash>/<file name>`` in storage.  That location is deterministic, so
    after a restart the (empty) filename cache is refilled from what is
    already on disk.

    Two requests for the same source in this process never process it at
    the same time.  Nothing stops two processes (or machines sharing the
    storage) from doing so; each writes a complete file and the last one
    wins.
    """

    def __init__(self, storage_provider, filename_cache, profile_service,
                 filter_registry, tokenizer, base_url=None, request_options=None):
        self.storage_provider = storage_provider
        self.filename_cache = filename_cache
        self.profile_service = profile_service
        self.filter_registry = filter_registry
        self.tokenizer = tokenizer
        self.base_url = base_url
        self.request_options = request_options or {}
        self._path_locks = KeyedLock()

    def get_image_profile_url(self, path, profile_name, content_item=None, custom_filters=None):
        '''
        Args:
            path (str):
                The public URL (or storage path) of the source image. It may
                be url-encoded.
            profile_name (str)
            content_item (ContentItem):
                The item the media belongs to, if known. Items without an
                image part are never processed.
            custom_filters (Filter or [Filter]):
                Filters to apply instead of the named profile's.
        Returns:
            str: the processed image's URL with a `v` timestamp, '' if the
                profile is unknown, or None if the source can't be read.
        '''
        decoded_path = ProfileNamer.decode_path(path)
        if isinstance(custom_filters, Filter):
            custom_filters = [custom_filters]
        custom_filters = [f for f in (custom_filters or []) if f is not None]

        file_path = self.filename_cache.get_file_name(profile_name, decoded_path)
        process = False

        # Media without an image part (e.g. svg files) would break the
        # filters, so they are served as they are.
        if content_item is None or content_item.has(IMAGE_PART):
            if not file_path:
                profile_file_path = self._profile_file_path(profile_name, decoded_path)
                if self.storage_provider.file_exists(profile_file_path):
                    self.filename_cache.update_file_name(profile_name, decoded_path, profile_file_path)
                    file_path = profile_file_path

            if not file_path:
                logger.debug('No processed file, processing required, profile %s for image %s', profile_name, path)
                process = True
            elif not self.storage_provider.file_exists(file_path):
                logger.debug('Processed file no longer exists, processing required, profile %s for image %s', profile_name, path)
                process = True
            else:
                path_last_modified = self._image_last_modified(path)
                if path_last_modified is not None:
                    file_last_modified = self.storage_provider.get_file(file_path).last_modified
                    if path_last_modified > file_last_modified:
                        logger.debug('Original file more recent, processing required, profile %s for image %s', profile_name, path)
                        process = True
        elif not file_path:
            file_path = self.storage_provider.get_storage_path(path)

        if process:
            logger.debug('Processing profile %s for image %s', profile_name, path)
            if custom_filters:
                filters = sorted(custom_filters, key=lambda f: f.position)
            else:
                profile = self.profile_service.get_image_profile_by_name(profile_name)
                if profile is None:
                    logger.warning('Unknown image profile %s', profile_name)
                    return ''
                filters = profile.ordered_filters()

            with self._path_locks(path):
                try:
                    file_path = self._process(path, decoded_path, profile_name, filters, content_item)
                except ImageUnavailable as iu:
                    logger.warning('Image unavailable for profile %s: %s', profile_name, iu)
                    return None

        if not file_path:
            return path

        # a timestamped url forces client caches to update when the file changes
        public_url = self.storage_provider.get_public_url(file_path)
        try:
            last_modified = self.storage_provider.get_file(file_path).last_modified
        except StorageException as se:
            logger.warning('No timestamp for %s: %s', file_path, se)
            return public_url
        return '%s?v=%d' % (public_url, to_ticks(last_modified))

    def _process(self, path, decoded_path, profile_name, filters, content_item):
        image = self._get_image(path)
        context = FilterContext(
            media=image,
            file_path=self._profile_file_path(profile_name, decoded_path)
        )

        tokens = {}
        if content_item is not None:
            tokens['Content'] = content_item

        try:
            self._apply_filters(context, filters, tokens)

            if not context.saved:
                try:
                    new_file = self.storage_provider.open_or_create(context.file_path)
                    with new_file.open_write() as f:
                        copy_stream(context.media, f)
                    # the storage provider may have altered the file path
                    context.file_path = new_file.get_path()
                except (OSError, StorageException):
                    logger.exception('A profile could not be processed: %s', path)
        finally:
            # filters usually swap in a new stream; close both
            image.close()
            if context.media is not image:
                context.media.close()

        self.filename_cache.update_file_name(profile_name, decoded_path, context.file_path)
        return context.file_path

    def _apply_filters(self, context, filters, tokens):
        for f in filters:
            descriptor = self.filter_registry.get_descriptor(f.category, f.type)
            if descriptor is None:
                # TODO: decide whether an unknown filter should fail the profile
                # instead of being skipped.
                logger.debug('No filter found for %s/%s, skipping', f.category, f.type)
                continue

            tokenized = self.tokenizer.replace(f.state, tokens)
            context.state = parse_state(tokenized)
            try:
                descriptor.apply(context)
            except ImageUnavailable:
                raise
            except FilterException as fe:
                logger.error('Filter %s/%s failed, skipping: %s', f.category, f.type, fe)
            except Exception:
                # third-party filters may raise anything
                logger.exception('Filter %s/%s raised, skipping', f.category, f.type)

    def _get_image(self, path):
        """Open the source image.

        Tried in order: the storage provider, an absolute URL, then an
        app-relative (~/) path against the configured base URL.

        Returns:
            a readable binary file
        Raises:
            ImageUnavailable
        """
        storage_path = self.storage_provider.get_storage_path(path)
        if storage_path is not None:
            try:
                return self.storage_provider.get_file(storage_path).open_read()
            except (OSError, StorageException) as e:
                logger.error('Could not open path: %s storagePath: %s (%s)', path, storage_path, e)

        if path.startswith(('http://', 'https://')):
            return self._fetch(path)

        if path.startswith('~/') and self.base_url:
            return self._fetch(urljoin(self.base_url, path[2:]))

        raise ImageUnavailable('Source image not found for path: %s' % (path,))

    def _fetch(self, url):
        try:
            with closing(requests.get(url, stream=True, **self.request_options)) as response:
                if not response.ok:
                    raise ImageUnavailable(
                        'Source image not found at %s. Status code returned: %s.' % (url, response.status_code)
                    )
                buf = BytesIO()
                for chunk in response.iter_content(8192):
                    buf.write(chunk)
        except requests.RequestException as e:
            raise ImageUnavailable('Could not fetch %s: %s' % (url, e))
        buf.seek(0)
        logger.info('Fetched %s', url)
        return buf

    def _image_last_modified(self, path):
        storage_path = self.storage_provider.get_storage_path(path)
        if storage_path is not None and self.storage_provider.file_exists(storage_path):
            return self.storage_provider.get_file(storage_path).last_modified
        return None

    def _profile_file_path(self, profile_name, path):
        location, filename = ProfileNamer.split_path(path)
        return self.storage_provider.combine(
            PROFILES_FOLDER,
            self.profile_service.get_name_hash_code(profile_name),
            self.profile_service.get_name_hash_code(location),
            filename
        )
