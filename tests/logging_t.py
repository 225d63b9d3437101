# -*- encoding: utf-8 -*-

import logging
from logging import StreamHandler
from logging.handlers import RotatingFileHandler

import pytest

from mediaprocessing.mp_exception import ConfigError
from mediaprocessing.webapp import StdErrFilter, StdOutFilter, configure_logging


FORMAT = '%(asctime)s (%(name)s) [%(levelname)s]: %(message)s'

valid_console_config = {
    'log_to': 'console',
    'log_level': 'INFO',
    'format': FORMAT,
}

valid_file_config = {
    'log_to': 'file',
    'log_level': 'INFO',
    'format': FORMAT,
    'log_dir': '/var/log/mediaprocessing',
    'max_size': 100000,
    'max_backups': 5,
}


def _record(level):
    return logging.LogRecord('mediaprocessing', level, __file__, 1, 'message', None, None)


def _own_handlers(logger):
    # pytest attaches its own capture handlers to the root logger
    return [
        h for h in logger.handlers
        if isinstance(h, RotatingFileHandler)
        or any(isinstance(f, (StdErrFilter, StdOutFilter)) for f in h.filters)
    ]


class TestLoggingConfig(object):

    @pytest.mark.parametrize('log_to', ['syslog', '', 'FILE'])
    def test_unknown_destination_is_configerror(self, log_to):
        config = dict(valid_console_config, log_to=log_to)
        with pytest.raises(ConfigError) as err:
            configure_logging(config=config)
        assert 'expected one of file/console' in str(err.value)

    @pytest.mark.parametrize('key', ['log_to', 'log_level', 'format'])
    def test_missing_mandatory_key_is_error(self, key):
        config = {k: v for k, v in valid_console_config.items() if k != key}
        with pytest.raises(ConfigError) as err:
            configure_logging(config=config)
        assert 'Missing mandatory logging parameters' in str(err.value)
        assert key in str(err.value)

    @pytest.mark.parametrize('key', ['log_dir', 'max_size', 'max_backups'])
    def test_file_logging_needs_rotation_settings(self, key):
        config = {k: v for k, v in valid_file_config.items() if k != key}
        with pytest.raises(ConfigError) as err:
            configure_logging(config=config)
        assert 'When log_to=file, the following parameters are required' in str(err.value)

    @pytest.mark.parametrize('log_level, expected_level', [
        ('ERROR', logging.ERROR),
        ('WARNING', logging.WARNING),
        ('INFO', logging.INFO),
        ('DEBUG', logging.DEBUG),
        ('verbose', logging.DEBUG),
    ])
    def test_log_level(self, log_level, expected_level, reset_logger):
        config = dict(valid_console_config, log_level=log_level)
        logger = configure_logging(config=config)
        assert logger.level == expected_level

    def test_console_logs_to_stdout_and_stderr(self, reset_logger):
        logger = configure_logging(config=valid_console_config)

        filter_types = sorted(
            type(f).__name__ for h in _own_handlers(logger) for f in h.filters
        )
        assert filter_types == ['StdErrFilter', 'StdOutFilter']
        assert all(isinstance(h, StreamHandler) for h in _own_handlers(logger))
        assert logger.handler_set

    def test_file_logging_rotates(self, reset_logger):
        logger = configure_logging(config=valid_file_config)

        handlers = _own_handlers(logger)
        assert len(handlers) == 1
        handler = handlers[0]
        assert isinstance(handler, RotatingFileHandler)
        assert handler.baseFilename == '/var/log/mediaprocessing/mediaprocessing.log'
        assert handler.maxBytes == 100000
        assert handler.backupCount == 5

    @pytest.mark.parametrize('config', [
        valid_console_config, valid_file_config
    ])
    def test_configuring_twice_adds_no_handlers(self, config, reset_logger):
        logger = configure_logging(config=config)
        handler_count = len(_own_handlers(logger))
        filter_count = len(logger.filters)

        configure_logging(config=config)
        assert len(_own_handlers(logger)) == handler_count
        assert len(logger.filters) == filter_count


class TestStreamFilters(object):

    @pytest.mark.parametrize('level, to_stderr, to_stdout', [
        (logging.DEBUG, False, True),
        (logging.INFO, False, True),
        (logging.WARNING, True, False),
        (logging.ERROR, True, False),
    ])
    def test_levels_are_split_between_streams(self, level, to_stderr, to_stdout):
        record = _record(level)
        assert bool(StdErrFilter().filter(record)) == to_stderr
        assert bool(StdOutFilter().filter(record)) == to_stdout
