# -*- encoding: utf-8 -*-

import attr


@attr.s(slots=True, frozen=True)
class ContentItem(object):
    """The content entity a media file belongs to.

    ``parts`` maps part names (e.g. ``'ImagePart'``) to dicts of their
    fields.  Only images carry an ``ImagePart``; other media, such as
    vector files, are served as they are.
    """
    id = attr.ib()
    content_type = attr.ib(default='Media')
    parts = attr.ib(default=attr.Factory(dict))

    def has(self, part_name):
        return part_name in self.parts

    def get(self, part_name):
        return self.parts.get(part_name)
