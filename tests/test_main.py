"""Tests for the command line entry point."""

import logging
import os
from unittest import mock

import pytest

from davmount.core.models import ConnectionResult, DownloadResult, FileItem
from davmount.core.webdav_client import WebDAVClient
from davmount.main import main
from davmount.services.folder_service import FolderService


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


def _run(data_dir, *args):
    return main(['--data-dir', data_dir] + list(args))


def _add_folder(data_dir, capsys):
    with mock.patch.object(WebDAVClient, 'test_connection',
                           return_value=ConnectionResult.CONNECTED):
        assert _run(data_dir, 'add', 'Media', '--url', 'https://cloud.example.com',
                    '--base-path', '/dav/files/u', '--username', 'u',
                    '--password', 'p') == 0
    return capsys.readouterr().out.strip()


def _fake_download(server_url, base_path, credentials, remote_path, destination,
                   **kwargs):
    os.makedirs(os.path.dirname(destination), exist_ok=True)
    with open(destination, 'wb') as f:
        f.write(b'data')
    return DownloadResult(bytes_written=4)


def test_add_and_list_folders(data_dir, capsys):
    with mock.patch.object(WebDAVClient, 'test_connection',
                           return_value=ConnectionResult.CONNECTED):
        assert _run(data_dir, 'add', 'Media', '--url', 'https://cloud.example.com',
                    '--base-path', '/dav/files/u', '--username', 'u',
                    '--password', 'p') == 0
    folder_id = capsys.readouterr().out.strip()

    assert _run(data_dir, 'folders') == 0
    out = capsys.readouterr().out
    assert folder_id in out
    assert 'https://cloud.example.com/dav/files/u' in out


def test_add_refused_when_connection_test_fails(data_dir, capsys):
    with mock.patch.object(WebDAVClient, 'test_connection',
                           return_value=ConnectionResult.UNAUTHORIZED):
        assert _run(data_dir, 'add', 'Media', '--url', 'https://cloud.example.com',
                    '--base-path', '/', '--username', 'u', '--password', 'bad') == 1
    assert 'unauthorized' in capsys.readouterr().err

    assert _run(data_dir, 'folders') == 0
    assert capsys.readouterr().out == ''


def test_errors_give_exit_code(data_dir, capsys):
    assert _run(data_dir, 'remove', 'missing-id') == 1
    assert 'Folder not found' in capsys.readouterr().err


def test_usage_on_empty_cache(data_dir, capsys):
    assert _run(data_dir, 'usage') == 0
    assert '0 B' in capsys.readouterr().out


def test_ls_shows_kind(data_dir, capsys):
    folder_id = _add_folder(data_dir, capsys)
    listing = [FileItem('Photos', '/Photos', True),
               FileItem('movie.mp4', '/movie.mp4', False, 6, 'video/mp4'),
               FileItem('notes.txt', '/notes.txt', False, 2, 'text/plain')]
    with mock.patch.object(WebDAVClient, 'list_directory', return_value=listing):
        assert _run(data_dir, 'ls', folder_id) == 0

    lines = capsys.readouterr().out.splitlines()
    assert lines[0].split()[:2] == ['d', 'dir']
    assert lines[1].split()[:2] == ['-', 'video']
    assert lines[2].split()[:2] == ['-', 'txt']


def test_offline_copies_by_path(data_dir, capsys):
    folder_id = _add_folder(data_dir, capsys)
    with mock.patch.object(WebDAVClient, 'download', side_effect=_fake_download):
        assert _run(data_dir, 'get', folder_id, '/Photos/b.jpg', '-q') == 0
    local_path = capsys.readouterr().out.strip()
    assert os.path.isfile(local_path)

    assert _run(data_dir, 'offline', folder_id) == 0
    out = capsys.readouterr().out
    assert out.split()[0] == 'image'
    assert '/Photos/b.jpg' in out

    assert _run(data_dir, 'rm-offline', folder_id, '--path', '/Photos/b.jpg') == 0
    assert not os.path.exists(local_path)
    assert _run(data_dir, 'rm-offline', folder_id, '--path', '/Photos/b.jpg') == 1
    assert 'No offline copy' in capsys.readouterr().err


def test_interrupt_cancels_downloads(data_dir, capsys):
    folder_id = _add_folder(data_dir, capsys)
    with mock.patch.object(FolderService, 'download_for_offline',
                           side_effect=KeyboardInterrupt), \
            mock.patch.object(FolderService, 'cancel_all_downloads',
                              return_value=1) as cancel_all:
        assert _run(data_dir, 'get', folder_id, '/movie.mp4', '-q') == 130
    cancel_all.assert_called_once_with()
    assert 'interrupted' in capsys.readouterr().err
