# constants.py
# -*- coding: utf-8 -*-

from datetime import datetime, timezone

# Processed images live under this folder of the storage root.
PROFILES_FOLDER = '_Profiles'

# Part a content item must carry for its media to go through a profile.
IMAGE_PART = 'ImagePart'

COPY_BUFFER_SIZE = 8192

# Cache-busting stamps count 100ns ticks from 0001-01-01T00:00:00Z.
TICKS_EPOCH = datetime(1, 1, 1, tzinfo=timezone.utc)

__formats = (
    ('bmp', 'BMP', 'image/bmp'),
    ('gif', 'GIF', 'image/gif'),
    ('jpg', 'JPEG', 'image/jpeg'),
    ('png', 'PNG', 'image/png'),
    ('tif', 'TIFF', 'image/tiff'),
    ('webp', 'WEBP', 'image/webp'),
)

PIL_FORMATS_BY_EXTENSION = dict((f[0], f[1]) for f in __formats)

FORMATS_BY_EXTENSION = dict((f[0], f[2]) for f in __formats)

#map 4-letter extensions to the 3-letter image format
EXTENSION_MAP = {
    'jpeg': 'jpg',
    'tiff': 'tif',
}
