#!/usr/bin/env python
#-*- coding: utf-8 -*-
'''
webapp.py
=========
Serves image profile URLs and the media they point to.

    /profiles/{profile}/{path}  -> 302 to the processed image; {path} is a
                                   storage path, never a remote URL
    /media/{path}               -> the stored file
'''
import logging
from logging.handlers import RotatingFileHandler
import os
from os import path
import re
from urllib.parse import urlsplit

from configobj import ConfigObj
from werkzeug.exceptions import HTTPException, NotFound
from werkzeug.http import http_date, parse_date
from werkzeug.routing import Map, Rule
from werkzeug.wrappers import Request, Response

from mediaprocessing import constants
from mediaprocessing.filename_cache import FileNameCache
from mediaprocessing.filters import FilterRegistry
from mediaprocessing.manager import ImageProfileManager
from mediaprocessing.mp_exception import ConfigError, StorageException
from mediaprocessing.profiles import ProfileService
from mediaprocessing.tokens import Tokenizer
from mediaprocessing.utils import import_class


def default_config_file_path():
    return path.join(path.dirname(path.realpath(__file__)), 'data', 'mediaprocessing.conf')


def get_debug_config():
    # change a few things, read the config and set up logging
    config = read_config(default_config_file_path())

    config['logging']['log_to'] = 'console'
    config['logging']['log_level'] = 'DEBUG'

    # override some stuff to look at tmp directories.
    config['storage']['root_dp'] = '/tmp/mediaprocessing/media'
    config['mediaprocessing.MediaProcessing']['base_url'] = 'http://localhost:5004/'

    return config


def create_app(debug=False, config_file_path=''):
    if debug:
        config = get_debug_config()
    else:
        config = read_config(config_file_path or default_config_file_path())

    return MediaProcessing(config)


def read_config(config_file_path):
    config = ConfigObj(config_file_path, unrepr=True, interpolation='template')
    # add the OS environment variables as the DEFAULT section to support
    # interpolating their values into other keys
    # make a copy of the os.environ dictionary so that the config object can't
    # inadvertently modify the environment
    config['DEFAULT'] = {key: val for (key, val) in os.environ.items() if key not in ('PS1',)}
    return config


def _validate_logging_config(config):
    """
    Validate the logging config before setting up a logger.
    """
    mandatory_keys = ['log_to', 'log_level', 'format']
    missing_keys = [key for key in mandatory_keys if key not in config]

    if missing_keys:
        raise ConfigError(
            'Missing mandatory logging parameters: %r' %
            ','.join(missing_keys)
        )

    if config['log_to'] not in ('file', 'console'):
        raise ConfigError(
            'logging.log_to=%r, expected one of file/console' % config['log_to']
        )

    if config['log_to'] == 'file':
        mandatory_keys = ['log_dir', 'max_size', 'max_backups']
        missing_keys = [key for key in mandatory_keys if key not in config]

        if missing_keys:
            raise ConfigError(
                'When log_to=file, the following parameters are required: %r' %
                ','.join(missing_keys)
            )


def configure_logging(config):
    _validate_logging_config(config)

    logger = logging.getLogger()

    try:
        logger.setLevel(config['log_level'])
    except ValueError:
        logger.setLevel(logging.DEBUG)

    formatter = logging.Formatter(fmt=config['format'])

    if not getattr(logger, 'handler_set', None):
        if config['log_to'] == 'file':
            fp = '%s.log' % (path.join(config['log_dir'], 'mediaprocessing'),)
            handler = RotatingFileHandler(fp,
                maxBytes=config['max_size'],
                backupCount=config['max_backups'],
                delay=True)
            handler.setFormatter(formatter)
            logger.addHandler(handler)
        elif config['log_to'] == 'console':
            from sys import __stderr__, __stdout__
            # STDERR
            err_handler = logging.StreamHandler(__stderr__)
            err_handler.addFilter(StdErrFilter())
            err_handler.setFormatter(formatter)
            logger.addHandler(err_handler)

            # STDOUT
            out_handler = logging.StreamHandler(__stdout__)
            out_handler.addFilter(StdOutFilter())
            out_handler.setFormatter(formatter)
            logger.addHandler(out_handler)
        else:
            # This should be protected by ``_validate_logging_config()``.
            assert False, "Should not be reachable"

        logger.handler_set = True
    return logger


class StdErrFilter(logging.Filter):
    '''Logging filter for stderr
    '''
    def filter(self, record):
        return 1 if record.levelno >= 30 else 0


class StdOutFilter(logging.Filter):
    '''Logging filter for stdout
    '''
    def filter(self, record):
        return 1 if record.levelno <= 20 else 0


class MediaProcessingResponse(Response):
    '''Adds the Access-Control-Allow-* headers when asked to.
    '''
    def set_acao(self, request, regex=None):
        if regex:
            if regex.search(request.url_root):
                self.headers['Access-Control-Allow-Origin'] = request.url_root
        else:
            self.headers['Access-Control-Allow-Origin'] = "*"
        self.headers['Access-Control-Allow-Methods'] = "GET, OPTIONS"


class NotFoundResponse(MediaProcessingResponse):
    def __init__(self, message):
        status = 404
        message = 'Not Found: %s (%d)' % (message, status)
        super(NotFoundResponse, self).__init__(message, status, content_type='text/plain')


class ServerSideErrorResponse(MediaProcessingResponse):
    def __init__(self, message):
        status = 500
        message = 'Server Side Error: %s (%d)' % (message, status)
        super(ServerSideErrorResponse, self).__init__(message, status, content_type='text/plain')


class MediaProcessing(object):

    def __init__(self, app_configs={}):
        '''The WSGI Application.
        Args:
            app_configs ({}):
                A dictionary of dictionaries that represents the
                mediaprocessing.conf file.
        '''
        self.app_configs = app_configs
        self.logger = configure_logging(app_configs['logging'])
        self.logger.debug('MediaProcessing initialized with these settings:')
        [self.logger.debug('%s.%s=%s', key, sub_key, self.app_configs[key][sub_key])
            for key in self.app_configs if key != 'DEFAULT'
            for sub_key in self.app_configs[key]]

        # make the mediaprocessing.MediaProcessing configs attrs for easier access
        _app_config = self.app_configs.get('mediaprocessing.MediaProcessing', {})
        self.base_url = _app_config.get('base_url') or None
        self.cors_regex = _app_config.get('cors_regex', None)
        if self.cors_regex:
            self.cors_regex = re.compile(self.cors_regex)
        request_options = {'verify': _app_config.get('ssl_check', True)}

        self.storage_provider = self._load_storage_provider()
        self.filename_cache = FileNameCache(
            size=self.app_configs.get('filename_cache', {}).get('size', 5000)
        )
        self.profile_service = ProfileService(
            self.app_configs.get('profiles', {}),
            self.filename_cache,
            self.storage_provider
        )
        self.filter_registry = FilterRegistry.from_config(self.app_configs.get('filters', {}))
        self.manager = ImageProfileManager(
            storage_provider=self.storage_provider,
            filename_cache=self.filename_cache,
            profile_service=self.profile_service,
            filter_registry=self.filter_registry,
            tokenizer=Tokenizer(),
            base_url=self.base_url,
            request_options=request_options
        )

        media_root = urlsplit(self.storage_provider.public_url).path
        self.url_map = Map([
            Rule('/', endpoint='index'),
            Rule('/profiles/<profile_name>/<path:media_path>', endpoint='profile'),
            Rule('%s<path:media_path>' % (media_root,), endpoint='media'),
        ])

    def _load_storage_provider(self):
        storage_config = self.app_configs['storage']
        impl = storage_config.get('impl', 'mediaprocessing.storage.FileSystemStorageProvider')
        StorageClass = import_class(impl)
        return StorageClass(storage_config)

    def wsgi_app(self, environ, start_response):
        request = Request(environ)
        response = self.route(request)
        return response(environ, start_response)

    def route(self, request):
        adapter = self.url_map.bind_to_environ(request.environ)
        try:
            endpoint, values = adapter.match()
        except NotFound:
            return NotFoundResponse('no route for %s' % (request.path,))
        except HTTPException as e:
            return e.get_response(request.environ)

        if endpoint == 'index':
            return self.get_index(request)
        elif endpoint == 'profile':
            return self.get_profile_url(request, **values)
        else:
            return self.get_media(request, **values)

    def __call__(self, environ, start_response):
        '''
        This makes MediaProcessing executable.
        '''
        return self.wsgi_app(environ, start_response)

    def get_index(self, request):
        '''
        Just so there's something at /: the names of the profiles.
        '''
        names = [p.name for p in self.profile_service.list_profiles()]
        return MediaProcessingResponse('\n'.join(names) + '\n', content_type='text/plain')

    def get_profile_url(self, request, profile_name, media_path):
        # Only stored media; remote and ~/ sources would make this route
        # fetch arbitrary URLs on behalf of any client.
        if self.storage_provider.get_storage_path(media_path) is None:
            return NotFoundResponse('not a stored media path: %s' % (media_path,))
        url = self.manager.get_image_profile_url(media_path, profile_name)
        if url == '':
            return NotFoundResponse('no image profile named %s' % (profile_name,))
        if url is None:
            return NotFoundResponse('image unavailable: %s' % (media_path,))

        r = MediaProcessingResponse()
        r.set_acao(request, self.cors_regex)
        r.headers['Location'] = url
        r.status_code = 302
        return r

    def get_media(self, request, media_path):
        try:
            storage_file = self.storage_provider.get_file(media_path)
        except StorageException as se:
            return NotFoundResponse(str(se))

        r = MediaProcessingResponse()
        r.set_acao(request, self.cors_regex)

        # The stamp from the FS needs to be rounded using the same precision
        # as when we send it, so for an accurate comparison turn it into
        # an http date and then parse it again.
        last_mod = parse_date(http_date(storage_file.last_modified))
        ims = parse_date(request.headers.get('If-Modified-Since'))
        if ims and ims >= last_mod:
            self.logger.debug('Sent 304 for %s ', media_path)
            r.status_code = 304
            return r

        extension = path.splitext(media_path)[1].lstrip('.').lower()
        extension = constants.EXTENSION_MAP.get(extension, extension)
        try:
            r.response = storage_file.open_read()
        except IOError as e:
            msg = '%s \n(This is likely a permissions problem)' % e
            return ServerSideErrorResponse(msg)
        r.content_type = constants.FORMATS_BY_EXTENSION.get(extension, 'application/octet-stream')
        r.status_code = 200
        r.last_modified = last_mod
        r.headers['Content-Length'] = storage_file.get_size()
        return r


if __name__ == '__main__':
    from werkzeug.serving import run_simple

    app = create_app(debug=True)

    run_simple('localhost', 5004, app, use_debugger=True, use_reloader=True)
