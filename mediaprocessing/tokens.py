# -*- encoding: utf-8 -*-
"""
Token replacement for filter parameters.

A token is a dotted name in braces, e.g. ``{Content.Id}`` or
``{Content.ImagePart.Width}``.  The first segment names an entry in the
context; each following segment is looked up as a mapping key, a content
item part, or an attribute (tried as written, then lower-cased), in that
order.  Tokens that can't be resolved are left in place.
"""

from logging import getLogger
import re

logger = getLogger(__name__)

TOKEN_RE = re.compile(r'\{(?P<name>[A-Za-z_][\w]*(?:\.[\w]+)*)\}')


def _lookup(value, segment):
    if isinstance(value, dict):
        return value[segment]
    getter = getattr(value, 'get', None)
    if getter is not None and hasattr(value, 'has') and value.has(segment):
        return getter(segment)
    for name in (segment, segment.lower()):
        try:
            return getattr(value, name)
        except AttributeError:
            pass
    raise KeyError(segment)


class Tokenizer(object):

    def replace(self, template, context):
        '''
        Args:
            template (str)
            context (dict): token roots, e.g. {'Content': content_item}
        Returns:
            str
        '''
        if not template:
            return template or ''

        def _evaluate(match):
            segments = match.group('name').split('.')
            try:
                value = context[segments[0]]
                for segment in segments[1:]:
                    value = _lookup(value, segment)
            except KeyError:
                logger.debug('Unresolved token %s', match.group(0))
                return match.group(0)
            return '' if value is None else str(value)

        return TOKEN_RE.sub(_evaluate, template)
