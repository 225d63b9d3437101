# -*- encoding: utf-8 -*-

class MediaProcessingException(Exception):
    """Base exception class for all errors raised by mediaprocessing."""
    pass


class StorageException(MediaProcessingException):
    pass


class ImageUnavailable(MediaProcessingException):
    """Raised when a source image can't be located or opened."""
    pass


class UnknownProfile(MediaProcessingException):
    pass


class FilterException(MediaProcessingException):
    pass


class ConfigError(MediaProcessingException):
    """Raised for errors in the user config."""
    pass
