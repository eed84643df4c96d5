"""Tests for the WebDAV client with HTTP faked at the requests layer."""

import io
import os
from threading import Event
from unittest import mock

import pytest
import requests
from webdav3.exceptions import (ConnectionException, NoConnection,
                                RemoteResourceNotFound, ResponseErrorCode)

from davmount.core.errors import (DownloadCancelledError, LocalStorageError,
                                  PathNotFoundError, RemoteNotFoundError, ServerError,
                                  StorageFullError, TLSError, UnauthorizedError,
                                  UnreachableError)
from davmount.core.models import ConnectionResult, ServerCredentials
from davmount.core.webdav_client import WebDAVClient, build_base_url

SERVER = 'https://cloud.example.com'
BASE = '/dav/files/u'
CREDS = ServerCredentials('u', 'p')


def make_response(status, body=b'', headers=None):
    response = requests.Response()
    response.status_code = status
    response.raw = io.BytesIO(body)
    response.headers.update(headers or {})
    return response


class FailingStream(io.BytesIO):
    """Body that drops the connection after the first read."""

    def __init__(self, first_chunk):
        super().__init__(first_chunk)
        self.reads = 0

    def read(self, size=-1):
        self.reads += 1
        if self.reads > 1:
            raise requests.exceptions.ConnectionError('connection reset')
        return super().read(size)


@pytest.fixture
def client():
    return WebDAVClient(chunk_size=4)


@pytest.fixture
def http():
    with mock.patch.object(requests.Session, 'request') as request:
        yield request


class TestUrls:
    def test_base_url_quotes_path(self):
        assert build_base_url(SERVER + '/', '/My Files') == SERVER + '/My%20Files'

    def test_root_base_path(self):
        assert build_base_url(SERVER, '/') == SERVER

    def test_file_url(self, client):
        assert client.file_url(SERVER, BASE, '/') == SERVER + BASE + '/'
        assert client.file_url(SERVER, BASE, 'a b.mp4') == SERVER + BASE + '/a%20b.mp4'

    def test_auth_headers(self):
        headers = WebDAVClient.auth_headers(ServerCredentials('u', 'p'))
        assert headers == {'Authorization': 'Basic dTpw'}


class TestConnectionTest:
    @pytest.mark.parametrize('status, expected', [
        (207, ConnectionResult.CONNECTED),
        (200, ConnectionResult.CONNECTED),
        (401, ConnectionResult.UNAUTHORIZED),
        (403, ConnectionResult.UNAUTHORIZED),
        (404, ConnectionResult.NOT_FOUND),
        (500, ConnectionResult.SERVER_ERROR),
        (502, ConnectionResult.SERVER_ERROR),
    ])
    def test_status_mapping(self, client, http, status, expected):
        http.return_value = make_response(status)
        assert client.test_connection(SERVER, BASE, CREDS) is expected

    def test_sends_depth_zero_propfind(self, client, http):
        http.return_value = make_response(207)
        client.test_connection(SERVER, BASE, CREDS)
        kwargs = http.call_args.kwargs
        assert kwargs['method'] == 'PROPFIND'
        assert kwargs['url'] == SERVER + BASE + '/'
        assert kwargs['headers']['Depth'] == '0'

    def test_falls_back_to_get_on_405(self, client, http):
        http.side_effect = [make_response(405), make_response(200)]
        assert client.test_connection(SERVER, BASE, CREDS) is ConnectionResult.CONNECTED
        assert [c.kwargs['method'] for c in http.call_args_list] == ['PROPFIND', 'GET']

    def test_tls_failure(self, client, http):
        http.side_effect = requests.exceptions.SSLError('certificate verify failed')
        assert client.test_connection(SERVER, BASE, CREDS) is ConnectionResult.TLS_ERROR

    @pytest.mark.parametrize('error', [
        requests.exceptions.ConnectionError('name resolution failed'),
        requests.exceptions.ConnectTimeout('timed out'),
    ])
    def test_network_failure(self, client, http, error):
        http.side_effect = error
        assert client.test_connection(SERVER, BASE, CREDS) is ConnectionResult.UNREACHABLE


class TestListDirectory:
    @pytest.fixture
    def webdav(self, client):
        fake = mock.MagicMock()
        with mock.patch.object(WebDAVClient, '_create_client', return_value=fake):
            yield fake

    def test_sorted_directories_first(self, client, webdav):
        webdav.list.return_value = [
            {'path': BASE + '/zeta.txt', 'isdir': False, 'size': '10',
             'content_type': 'text/plain', 'modified': 'Mon, 01 Jan 2024 10:00:00 GMT'},
            {'path': BASE + '/Movies/', 'isdir': True, 'size': None},
            {'path': BASE + '/alpha.mp4', 'isdir': False, 'size': '500000000',
             'content_type': None},
            {'path': BASE + '/books/', 'isdir': True},
        ]
        items = client.list_directory(SERVER, BASE, CREDS, '/')

        assert [i.name for i in items] == ['books', 'Movies', 'alpha.mp4', 'zeta.txt']
        movie = items[2]
        assert movie.path == '/alpha.mp4'
        assert movie.size == 500000000
        assert movie.mime_type == 'video/mp4'
        assert items[0].is_directory and items[0].mime_type is None
        assert items[3].modified_at == 'Mon, 01 Jan 2024 10:00:00 GMT'

    def test_sub_path_entries(self, client, webdav):
        webdav.list.return_value = [
            {'path': BASE + '/Movies/', 'isdir': True},
            {'path': BASE + '/Movies/My Film.mkv', 'isdir': False, 'size': '7'},
        ]
        items = client.list_directory(SERVER, BASE, CREDS, '/Movies')
        webdav.list.assert_called_once_with('/Movies', get_info=True)
        assert len(items) == 1
        assert items[0].path == '/Movies/My Film.mkv'

    def test_missing_base_path(self, client, webdav):
        webdav.list.side_effect = RemoteResourceNotFound('/')
        with pytest.raises(RemoteNotFoundError) as info:
            client.list_directory(SERVER, BASE, CREDS, '/')
        assert not isinstance(info.value, PathNotFoundError)

    def test_missing_sub_path(self, client, webdav):
        webdav.list.side_effect = RemoteResourceNotFound('/gone')
        with pytest.raises(PathNotFoundError):
            client.list_directory(SERVER, BASE, CREDS, '/gone')

    def test_unauthorized(self, client, webdav):
        webdav.list.side_effect = ResponseErrorCode(SERVER, 401, 'Unauthorized')
        with pytest.raises(UnauthorizedError) as info:
            client.list_directory(SERVER, BASE, CREDS)
        assert info.value.status_code == 401

    def test_server_error(self, client, webdav):
        webdav.list.side_effect = ResponseErrorCode(SERVER, 507, 'Insufficient Storage')
        with pytest.raises(ServerError):
            client.list_directory(SERVER, BASE, CREDS)

    def test_unreachable(self, client, webdav):
        webdav.list.side_effect = NoConnection('cloud.example.com')
        with pytest.raises(UnreachableError) as info:
            client.list_directory(SERVER, BASE, CREDS)
        assert not isinstance(info.value, TLSError)

    def test_tls_failure(self, client, webdav):
        webdav.list.side_effect = ConnectionException(
            requests.exceptions.SSLError('self signed certificate'))
        with pytest.raises(TLSError):
            client.list_directory(SERVER, BASE, CREDS)

    def test_webdav3_options(self, client):
        with mock.patch('davmount.core.webdav_client.Client') as factory:
            client._create_client(SERVER, '/My Files', CREDS)
        options = factory.call_args.args[0]
        assert options['webdav_hostname'] == SERVER
        assert options['webdav_root'] == '/My Files'
        assert options['webdav_login'] == 'u'
        assert options['webdav_disable_check'] is True


class TestDownload:
    def test_writes_destination(self, client, http, tmp_path):
        http.return_value = make_response(
            200, b'hello world', {'Content-Length': '11', 'Content-Type': 'video/mp4'})
        destination = tmp_path / 'out' / 'movie.mp4'
        progress = []

        result = client.download(SERVER, BASE, CREDS, '/movie.mp4', str(destination),
                                 progress_callback=lambda r, t: progress.append((r, t)))

        assert destination.read_bytes() == b'hello world'
        assert result.bytes_written == 11
        assert result.content_type == 'video/mp4'
        assert progress[-1] == (11, 11)
        assert os.listdir(destination.parent) == ['movie.mp4']
        assert http.call_args.kwargs['url'] == SERVER + BASE + '/movie.mp4'

    def test_http_error_leaves_nothing(self, client, http, tmp_path):
        http.return_value = make_response(404)
        with pytest.raises(RemoteNotFoundError):
            client.download(SERVER, BASE, CREDS, '/gone.mp4', str(tmp_path / 'gone.mp4'))
        assert os.listdir(tmp_path) == []

    def test_unauthorized(self, client, http, tmp_path):
        http.return_value = make_response(401)
        with pytest.raises(UnauthorizedError):
            client.download(SERVER, BASE, CREDS, '/a.txt', str(tmp_path / 'a.txt'))

    def test_broken_stream_keeps_previous_file(self, client, http, tmp_path):
        destination = tmp_path / 'a.txt'
        destination.write_bytes(b'old')
        response = make_response(200, headers={'Content-Length': '100'})
        response.raw = FailingStream(b'abcd')
        http.return_value = response

        with pytest.raises(UnreachableError):
            client.download(SERVER, BASE, CREDS, '/a.txt', str(destination))

        assert destination.read_bytes() == b'old'
        assert os.listdir(tmp_path) == ['a.txt']

    def test_connection_refused(self, client, http, tmp_path):
        http.side_effect = requests.exceptions.ConnectionError('refused')
        with pytest.raises(UnreachableError):
            client.download(SERVER, BASE, CREDS, '/a.txt', str(tmp_path / 'a.txt'))
        assert os.listdir(tmp_path) == []

    def test_cancelled(self, client, http, tmp_path):
        http.return_value = make_response(200, b'0123456789')
        cancel = Event()
        cancel.set()
        with pytest.raises(DownloadCancelledError):
            client.download(SERVER, BASE, CREDS, '/a.txt', str(tmp_path / 'a.txt'),
                            cancel_event=cancel)
        assert os.listdir(tmp_path) == []

    def test_content_length_over_limit(self, client, http, tmp_path):
        http.return_value = make_response(200, b'x' * 20, {'Content-Length': '20'})
        with pytest.raises(StorageFullError):
            client.download(SERVER, BASE, CREDS, '/a.bin', str(tmp_path / 'a.bin'),
                            max_bytes=10)
        assert os.listdir(tmp_path) == []

    def test_unwritable_directory(self, client, http, tmp_path):
        (tmp_path / 'blocked').write_bytes(b'not a directory')
        destination = tmp_path / 'blocked' / 'a.txt'

        with pytest.raises(LocalStorageError) as excinfo:
            client.download(SERVER, BASE, CREDS, '/a.txt', str(destination))

        assert excinfo.value.details['path'] == str(destination)
        assert isinstance(excinfo.value.cause, OSError)
        http.assert_not_called()

    def test_destination_is_a_directory(self, client, http, tmp_path):
        http.return_value = make_response(200, b'hello')
        (tmp_path / 'a.txt').mkdir()

        with pytest.raises(LocalStorageError):
            client.download(SERVER, BASE, CREDS, '/a.txt', str(tmp_path / 'a.txt'))

        assert os.listdir(tmp_path) == ['a.txt']

    def test_unknown_length_cut_off(self, client, http, tmp_path):
        http.return_value = make_response(200, b'x' * 20)
        with pytest.raises(StorageFullError):
            client.download(SERVER, BASE, CREDS, '/a.bin', str(tmp_path / 'a.bin'),
                            max_bytes=10)
        assert os.listdir(tmp_path) == []
