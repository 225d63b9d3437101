# webapp_t.py
#-*- coding: utf-8 -*-

from datetime import datetime, timedelta, timezone
import re

from PIL import Image
import pytest
import responses
from werkzeug.http import http_date
from werkzeug.test import Client

from mediaprocessing import webapp
from mediaprocessing.mp_exception import ConfigError
from mediaprocessing.storage import FileSystemStorageProvider


@pytest.fixture
def app(tmpdir, reset_logger):
    config = webapp.get_debug_config()
    config['storage']['root_dp'] = str(tmpdir.join('media'))
    return webapp.MediaProcessing(config)


@pytest.fixture
def client(app):
    with app.storage_provider.open_or_create('img/a.jpg').open_write() as f:
        Image.new('RGB', (640, 480), 'green').save(f, format='JPEG')
    return Client(app)


class TestDebugConfig(object):

    def test_debug_config_logs_to_console(self):
        config = webapp.get_debug_config()
        assert config['logging']['log_to'] == 'console'
        assert config['logging']['log_level'] == 'DEBUG'

    def test_environment_is_the_default_section(self, monkeypatch):
        monkeypatch.setenv('MEDIAPROCESSING_TEST_VAR', 'here')
        monkeypatch.setenv('PS1', '$ ')
        config = webapp.read_config(webapp.default_config_file_path())
        assert config['DEFAULT']['MEDIAPROCESSING_TEST_VAR'] == 'here'
        assert 'PS1' not in config['DEFAULT']

    def test_app_is_wired_from_config(self, app):
        assert isinstance(app.storage_provider, FileSystemStorageProvider)
        assert app.filename_cache.size == 5000
        names = [p.name for p in app.profile_service.list_profiles()]
        assert names == ['gallery', 'thumbnail']
        assert app.filter_registry.get_descriptor('Transform', 'Resize') is not None

    def test_bad_storage_impl_is_configerror(self, tmpdir, reset_logger):
        config = webapp.get_debug_config()
        config['storage']['root_dp'] = str(tmpdir)
        config['storage']['impl'] = 'mediaprocessing.storage.NoSuchProvider'
        with pytest.raises(ConfigError):
            webapp.MediaProcessing(config)

    def test_create_app_from_config_file(self, tmpdir, reset_logger):
        with open(webapp.default_config_file_path()) as f:
            text = f.read()
        text = text.replace(
            "root_dp = '/var/lib/mediaprocessing/media'",
            "root_dp = '%s'" % tmpdir.join('media')
        )
        config_fp = tmpdir.join('mediaprocessing.conf')
        config_fp.write(text)

        app = webapp.create_app(config_file_path=str(config_fp))

        assert app.storage_provider.root_dp == str(tmpdir.join('media').realpath())


class TestIndex(object):

    def test_lists_profiles(self, client):
        resp = client.get('/')
        assert resp.status_code == 200
        assert resp.get_data(as_text=True) == 'gallery\nthumbnail\n'

    def test_unknown_route_is_404(self, client):
        resp = client.get('/nowhere')
        assert resp.status_code == 404


class TestProfileRedirect(object):

    def test_redirects_to_processed_image(self, client):
        resp = client.get('/profiles/thumbnail/img/a.jpg')

        assert resp.status_code == 302
        assert '/media/_Profiles/' in resp.headers['Location']
        assert '?v=' in resp.headers['Location']
        assert resp.headers['Access-Control-Allow-Origin'] == '*'

    def test_redirect_serves_the_image(self, client):
        location = client.get('/profiles/thumbnail/img/a.jpg').headers['Location']
        path = location[location.index('/media/'):].split('?')[0]

        resp = client.get(path)

        assert resp.status_code == 200
        assert resp.headers['Content-Type'] == 'image/jpeg'
        assert int(resp.headers['Content-Length']) == len(resp.data)

    def test_unknown_profile_is_404(self, client):
        resp = client.get('/profiles/nope/img/a.jpg')
        assert resp.status_code == 404
        assert 'no image profile named nope' in resp.get_data(as_text=True)

    def test_missing_image_is_404(self, client):
        resp = client.get('/profiles/thumbnail/img/missing.jpg')
        assert resp.status_code == 404
        assert 'image unavailable' in resp.get_data(as_text=True)

    @responses.activate
    def test_app_relative_source_is_not_fetched(self, client):
        resp = client.get('/profiles/thumbnail/~/img/a.jpg')
        assert resp.status_code == 404
        assert 'not a stored media path' in resp.get_data(as_text=True)
        assert len(responses.calls) == 0


class TestMedia(object):

    def test_serves_stored_file(self, client):
        resp = client.get('/media/img/a.jpg')
        assert resp.status_code == 200
        assert resp.headers['Content-Type'] == 'image/jpeg'
        assert 'Last-Modified' in resp.headers

    def test_not_modified(self, client):
        later = datetime.now(timezone.utc) + timedelta(hours=1)
        resp = client.get('/media/img/a.jpg', headers={'If-Modified-Since': http_date(later)})
        assert resp.status_code == 304

    def test_modified_since(self, client):
        earlier = datetime(2000, 1, 1, tzinfo=timezone.utc)
        resp = client.get('/media/img/a.jpg', headers={'If-Modified-Since': http_date(earlier)})
        assert resp.status_code == 200

    def test_missing_file_is_404(self, client):
        resp = client.get('/media/img/missing.jpg')
        assert resp.status_code == 404

    def test_cors_regex(self, app, client):
        app.cors_regex = re.compile('example.org')
        resp = client.get('/media/img/a.jpg')
        assert 'Access-Control-Allow-Origin' not in resp.headers
