"""
`filters` -- Image Filters and the Registry That Describes Them
===============================================================
"""
from io import BytesIO
from logging import getLogger
import posixpath
from urllib.parse import parse_qsl

import attr
from PIL import Image, ImageColor, ImageOps

from mediaprocessing.constants import EXTENSION_MAP, PIL_FORMATS_BY_EXTENSION
from mediaprocessing.mp_exception import FilterException, ImageUnavailable
from mediaprocessing.utils import import_class

logger = getLogger(__name__)

TRANSFORM = 'Transform'

ALIGNMENTS = {
    'topleft': (0.0, 0.0),
    'topcenter': (0.5, 0.0),
    'topright': (1.0, 0.0),
    'middleleft': (0.0, 0.5),
    'middlecenter': (0.5, 0.5),
    'middleright': (1.0, 0.5),
    'bottomleft': (0.0, 1.0),
    'bottomcenter': (0.5, 1.0),
    'bottomright': (1.0, 1.0),
}


def parse_state(state):
    """Turn a filter's (already tokenized) state string into a dict.

    Keys are lower-cased, so ``Width=10`` and ``width=10`` are the same
    parameter.
    """
    if not state:
        return {}
    return dict((k.lower(), v) for k, v in parse_qsl(state, keep_blank_values=True))


@attr.s(slots=True)
class FilterContext(object):
    """What a single profile run hands from one filter to the next.

    Attributes:
        media (file-like): the current image, encoded.
        file_path (str): where the result will be stored.
        state (dict): the parameters of the filter being applied.
        saved (bool): set by a filter that has already stored the result
            at ``file_path``.
    """
    media = attr.ib()
    file_path = attr.ib()
    state = attr.ib(default=attr.Factory(dict))
    saved = attr.ib(default=False)


@attr.s(slots=True, frozen=True)
class FilterDescriptor(object):
    category = attr.ib()
    type = attr.ib()
    name = attr.ib(default='')
    description = attr.ib(default='')
    filter = attr.ib(default=None, repr=False)

    def apply(self, context):
        self.filter(context)


def _int_param(state, key, default=0):
    value = state.get(key, '')
    if value == '':
        return default
    try:
        return int(float(value))
    except ValueError:
        raise FilterException('%s must be a number, got %r' % (key, value))


def _target_format(file_path, fallback):
    extension = posixpath.splitext(file_path)[1].lstrip('.').lower()
    extension = EXTENSION_MAP.get(extension, extension)
    return PIL_FORMATS_BY_EXTENSION.get(extension, fallback)


def _load_image(context):
    if context.media.seekable():
        context.media.seek(0)
    try:
        im = Image.open(context.media)
        im.load()
    except (OSError, SyntaxError) as err:
        raise ImageUnavailable('Could not decode image for %s: %s' % (context.file_path, err))
    return im


def _save_image(context, im, source_format, file_path=None, **options):
    """Encode ``im`` into a new ``context.media``.

    The format follows the extension of ``file_path`` (default: the
    context's).  ``context.file_path`` is only changed once encoding
    succeeded.
    """
    file_path = file_path or context.file_path
    pil_format = _target_format(file_path, source_format or 'PNG')

    # The formats without an alpha channel can't take RGBA, LA or P.
    if pil_format in ('JPEG', 'BMP') and im.mode not in ('RGB', 'L'):
        im = im.convert('RGB')
    # CMYK and friends only go back out as JPEG or TIFF.
    elif pil_format not in ('JPEG', 'TIFF') and im.mode not in ('1', 'L', 'LA', 'P', 'RGB', 'RGBA'):
        im = im.convert('RGBA' if 'A' in im.mode else 'RGB')

    if pil_format in ('JPEG', 'WEBP'):
        options.setdefault('quality', 90)

    out = BytesIO()
    try:
        im.save(out, format=pil_format, **options)
    except (OSError, ValueError) as err:
        raise FilterException('Could not save %s as %s: %s' % (file_path, pil_format, err))
    out.seek(0)
    context.media = out
    context.file_path = file_path


class _AbstractFilter(object):
    category = TRANSFORM
    type = None
    name = ''
    description = ''

    def __call__(self, context):
        cn = self.__class__.__name__
        raise NotImplementedError('__call__() not implemented for %s' % (cn,))

    def descriptor(self):
        return FilterDescriptor(
            category=self.category,
            type=self.type,
            name=self.name,
            description=self.description,
            filter=self
        )


class ResizeFilter(_AbstractFilter):
    """
    Parameters:
     * `width`, `height`: target size in pixels; 0 or missing keeps the
       aspect ratio from the other dimension.
     * `mode`: `max` (fit inside, the default), `pad` (fit inside, then pad
       to the exact size), `crop` (fill, then crop to the exact size) or
       `stretch` (exact size, ignoring the aspect ratio).
     * `alignment`: where to anchor for `pad` and `crop`, e.g. `topleft`,
       `middlecenter` (the default), `bottomright`.
     * `padcolor`: hex color for `pad`, default `#ffffff`.
    """
    type = 'Resize'
    name = 'Resize'
    description = 'Resizes to a fixed height and/or width.'

    MODES = ('max', 'pad', 'crop', 'stretch')

    def __call__(self, context):
        state = context.state
        width = _int_param(state, 'width')
        height = _int_param(state, 'height')
        mode = state.get('mode', 'max').lower() or 'max'
        alignment = state.get('alignment', 'middlecenter').lower() or 'middlecenter'

        if mode not in self.MODES:
            raise FilterException('Unknown resize mode %r' % (mode,))
        if alignment not in ALIGNMENTS:
            raise FilterException('Unknown alignment %r' % (alignment,))
        if width < 0 or height < 0:
            raise FilterException('Resize dimensions must not be negative')
        if not width and not height:
            return

        im = _load_image(context)
        source_format = im.format
        w, h = self._target_size(im.size, width, height)
        centering = ALIGNMENTS[alignment]

        logger.debug('Resizing to %r (%s)', (w, h), mode)
        if mode == 'stretch':
            im = im.resize((w, h), resample=Image.LANCZOS)
        elif mode == 'crop':
            im = ImageOps.fit(im, (w, h), method=Image.LANCZOS, centering=centering)
        elif mode == 'pad':
            padcolor = state.get('padcolor', '') or '#ffffff'
            if not padcolor.startswith('#'):
                padcolor = '#' + padcolor
            try:
                color = ImageColor.getrgb(padcolor)
            except ValueError:
                raise FilterException('Invalid pad color %r' % (padcolor,))
            if im.mode not in ('RGB', 'RGBA'):
                im = im.convert('RGBA' if 'A' in im.mode else 'RGB')
            im = ImageOps.pad(im, (w, h), method=Image.LANCZOS, color=color, centering=centering)
        else:
            im = ImageOps.contain(im, (w, h), method=Image.LANCZOS)

        _save_image(context, im, source_format)

    @staticmethod
    def _target_size(size, width, height):
        src_w, src_h = size
        if not width:
            width = max(1, int(round(src_w * height / float(src_h))))
        elif not height:
            height = max(1, int(round(src_h * width / float(src_w))))
        return width, height


class CropFilter(_AbstractFilter):
    """
    Parameters: `left`, `top`, `width`, `height` in pixels.  The box is
    clamped to the image; a missing width or height runs to the edge.
    """
    type = 'Crop'
    name = 'Crop'
    description = 'Crops to a fixed height and width.'

    def __call__(self, context):
        state = context.state
        width = _int_param(state, 'width')
        height = _int_param(state, 'height')
        if width < 0 or height < 0:
            raise FilterException('Crop dimensions must not be negative')

        im = _load_image(context)
        source_format = im.format
        src_w, src_h = im.size

        left = min(max(_int_param(state, 'left'), 0), src_w - 1)
        top = min(max(_int_param(state, 'top'), 0), src_h - 1)
        width = width or src_w - left
        height = height or src_h - top

        # PIL: "The box is a 4-tuple defining the left, upper, right, and
        # lower pixel coordinate."
        box = (left, top, min(left + width, src_w), min(top + height, src_h))
        logger.debug('Cropping to: %r', box)
        _save_image(context, im.crop(box), source_format)


class FormatFilter(_AbstractFilter):
    """
    Parameters:
     * `format`: one of jpg, png, gif, webp, bmp, tif.
     * `quality`: encoder quality for jpg and webp.
    """
    type = 'Format'
    name = 'Format'
    description = 'Changes the image file format.'

    def __call__(self, context):
        state = context.state
        extension = state.get('format', '').lower()
        extension = EXTENSION_MAP.get(extension, extension)
        if extension not in PIL_FORMATS_BY_EXTENSION:
            raise FilterException('Unsupported format %r' % (extension,))

        im = _load_image(context)
        root = posixpath.splitext(context.file_path)[0]
        file_path = '%s.%s' % (root, extension)

        options = {}
        quality = _int_param(state, 'quality')
        if quality:
            options['quality'] = quality
        _save_image(context, im, im.format, file_path=file_path, **options)


class GrayscaleFilter(_AbstractFilter):
    type = 'Grayscale'
    name = 'Grayscale'
    description = 'Converts the image to shades of gray.'

    def __call__(self, context):
        im = _load_image(context)
        source_format = im.format
        _save_image(context, im.convert('L'), source_format)


class _AbstractFilterProvider(object):

    def __init__(self, config):
        self.config = config

    def describe(self):
        '''
        Returns:
            [FilterDescriptor]
        '''
        cn = self.__class__.__name__
        raise NotImplementedError('describe() not implemented for %s' % (cn,))


class ImageFilterProvider(_AbstractFilterProvider):
    """The stock Pillow filters."""

    filter_classes = (ResizeFilter, CropFilter, FormatFilter, GrayscaleFilter)

    def describe(self):
        return [klass().descriptor() for klass in self.filter_classes]


class FilterRegistry(object):
    """Collects the descriptors of every configured filter provider.

    The config dictionary MAY contain
     * `providers`, a list of qualified provider class names (default: the
       stock ImageFilterProvider).
    """

    def __init__(self, providers):
        self.providers = list(providers)
        self._descriptors = None

    @classmethod
    def from_config(cls, config):
        names = (config or {}).get(
            'providers', ['mediaprocessing.filters.ImageFilterProvider']
        )
        providers = []
        for qname in names:
            Klass = import_class(qname)
            providers.append(Klass(config))
            logger.debug('Loaded filter provider %s', qname)
        return cls(providers)

    def describe_filters(self):
        if self._descriptors is None:
            self._descriptors = [d for p in self.providers for d in p.describe()]
        return list(self._descriptors)

    def get_descriptor(self, category, type_):
        '''
        Returns:
            FilterDescriptor or None
        '''
        for descriptor in self.describe_filters():
            if descriptor.category == category and descriptor.type == type_:
                return descriptor
        return None
