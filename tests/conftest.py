import logging

from PIL import Image
import pytest

from mediaprocessing.filename_cache import FileNameCache
from mediaprocessing.filters import FilterDescriptor, FilterRegistry, ImageFilterProvider
from mediaprocessing.manager import ImageProfileManager
from mediaprocessing.profiles import ProfileService
from mediaprocessing.storage import FileSystemStorageProvider
from mediaprocessing.tokens import Tokenizer


class RecordingFilterProvider(object):
    """
    A `Test/Record` filter that leaves the image alone and remembers the
    `name` parameter of every call, in order.
    """
    def __init__(self):
        self.calls = []

    def describe(self):
        return [FilterDescriptor(category='Test', type='Record', filter=self._record)]

    def _record(self, context):
        self.calls.append(context.state.get('name'))


@pytest.fixture
def reset_logger():
    """Reset the logger at the end of a test run."""
    yield
    logger = logging.getLogger()

    # Note: we wrap ``logger.handlers`` and ``logger.filters`` in calls to
    # ``list()`` because they change size mid-iteration, and we want to ensure
    # that we really do delete every handler and filter.
    for h in list(logger.handlers):
        logger.removeHandler(h)
    for f in list(logger.filters):
        logger.removeFilter(f)

    try:
        delattr(logger, 'handler_set')
    except AttributeError:
        pass

    assert len(logger.handlers) == 0
    assert len(logger.filters) == 0


@pytest.fixture
def storage(tmpdir):
    return FileSystemStorageProvider({
        'root_dp': str(tmpdir.join('media')),
        'public_url': '/media/',
    })


@pytest.fixture
def write_image(storage):
    """Returns a function that stores a solid-colour image and returns its
    absolute path.
    """
    def _write_image(storage_path, size=(64, 48), color='red', format='JPEG'):
        storage_file = storage.open_or_create(storage_path)
        with storage_file.open_write() as f:
            Image.new('RGB', size, color).save(f, format=format)
        return storage_file.fp
    return _write_image


@pytest.fixture
def filename_cache():
    return FileNameCache()


@pytest.fixture
def profile_service(storage, filename_cache):
    config = {
        'thumbnail': {'filters': [
            {'category': 'Transform', 'type': 'Resize', 'position': 0,
             'state': 'width=32&height=32&mode=crop'},
            {'category': 'Transform', 'type': 'Grayscale', 'position': 1},
        ]},
        'recorded': {'filters': [
            {'category': 'Test', 'type': 'Record', 'position': 0, 'state': 'name=only'},
        ]},
    }
    return ProfileService(config, filename_cache, storage)


@pytest.fixture
def recorder():
    return RecordingFilterProvider()


@pytest.fixture
def filter_registry(recorder):
    return FilterRegistry([ImageFilterProvider({}), recorder])


@pytest.fixture
def manager(storage, filename_cache, profile_service, filter_registry):
    return ImageProfileManager(
        storage_provider=storage,
        filename_cache=filename_cache,
        profile_service=profile_service,
        filter_registry=filter_registry,
        tokenizer=Tokenizer(),
        base_url='http://example.org/'
    )
