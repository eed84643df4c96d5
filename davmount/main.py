# main.py
"""davmount - command line entry point."""

import argparse
import getpass
import logging
import sys
from typing import List, Optional

from davmount.core.config import ConfigManager
from davmount.core.errors import DavMountError
from davmount.services.folder_service import FolderService
from davmount.utils.helpers import format_size
from davmount.utils.logging_config import setup_logging
from davmount.utils.mime import is_media

logger = logging.getLogger(__name__)


def _password(args) -> str:
    return args.password if args.password is not None else getpass.getpass('Password: ')


def _print_progress(received: int, total: int):
    if total:
        sys.stderr.write(f"\r{format_size(received)} / {format_size(total)}")
    else:
        sys.stderr.write(f"\r{format_size(received)}")
    sys.stderr.flush()


def _kind(item) -> str:
    """Short file kind for listings: dir, image, video, audio or the extension."""
    if item.is_directory:
        return 'dir'
    if is_media(item.mime_type):
        return item.mime_type.split('/', 1)[0].lower()
    return item.extension or '-'


def cmd_test(service: FolderService, args) -> int:
    result = service.check_connection(args.url, args.base_path, args.username,
                                      _password(args))
    print(result.value)
    return 0 if result.ok else 1


def cmd_add(service: FolderService, args) -> int:
    password = _password(args)
    result = service.check_connection(args.url, args.base_path, args.username, password)
    if not result.ok:
        print(f"Connection test failed: {result.value}", file=sys.stderr)
        return 1
    folder = service.create_folder(args.name, args.url, args.base_path,
                                   args.username, password, icon_color=args.color)
    print(folder.id)
    return 0


def cmd_update(service: FolderService, args) -> int:
    password = args.password
    if args.username is not None and password is None:
        password = getpass.getpass('Password: ')
    folder = service.update_folder(args.folder_id, name=args.name,
                                   server_url=args.url, base_path=args.base_path,
                                   username=args.username, password=password,
                                   icon_color=args.color)
    print(f"{folder.id}  {folder.name}  {folder.full_url}")
    return 0


def cmd_remove(service: FolderService, args) -> int:
    service.delete_folder(args.folder_id, delete_offline_files=not args.keep_offline)
    return 0


def cmd_folders(service: FolderService, args) -> int:
    for folder in service.list_folders():
        print(f"{folder.id}  {folder.name}  {folder.full_url}")
    return 0


def cmd_ls(service: FolderService, args) -> int:
    for item in service.browse(args.folder_id, args.path):
        marker = 'd' if item.is_directory else ('o' if item.is_offline_available else '-')
        print(f"{marker} {_kind(item):<6} {item.formatted_size:>10}  {item.name}")
    return 0


def cmd_get(service: FolderService, args) -> int:
    callback = None if args.quiet else _print_progress
    record = service.download_for_offline(args.folder_id, args.remote_path,
                                          expected_size=args.size,
                                          progress_callback=callback)
    if callback:
        sys.stderr.write('\n')
    print(record.local_path)
    return 0


def cmd_offline(service: FolderService, args) -> int:
    if args.folder_id:
        for item in service.browse_offline(args.folder_id):
            print(f"{_kind(item):<6} {item.formatted_size:>10}  {item.path}")
        return 0
    for record in service.list_offline_files():
        print(f"{record.id}  {record.formatted_size:>10}  {record.remote_path}")
    return 0


def cmd_rm_offline(service: FolderService, args) -> int:
    if args.path is None:
        service.remove_offline_copy(args.target)
        return 0
    if not service.remove_offline_copy_by_path(args.target, args.path):
        print(f"No offline copy of {args.path}", file=sys.stderr)
        return 1
    return 0


def cmd_cleanup(service: FolderService, args) -> int:
    report = service.cleanup_offline_cache()
    print(f"stale records pruned: {len(report['stale'])}")
    print(f"orphaned files removed: {report['orphans']}")
    return 0


def cmd_usage(service: FolderService, args) -> int:
    usage = service.storage_usage()
    names = {f.id: f.name for f in service.list_folders()}
    for folder_id, size in usage['folders'].items():
        print(f"{format_size(size):>10}  {names.get(folder_id, folder_id)}")
    print(f"{format_size(usage['total']):>10}  total")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='davmount',
                                     description='WebDAV virtual folders with offline copies')
    parser.add_argument('--data-dir', help='configuration and cache directory')
    parser.add_argument('-v', '--verbose', action='store_true', help='debug output')
    sub = parser.add_subparsers(dest='command', required=True)

    def server_args(p, required=True):
        p.add_argument('--url', required=required, help='server URL')
        p.add_argument('--base-path', required=required, help='remote base path')
        p.add_argument('--username', required=required)
        p.add_argument('--password', help='prompted for when omitted')

    p = sub.add_parser('test', help='test a server connection')
    server_args(p)
    p.set_defaults(func=cmd_test)

    p = sub.add_parser('add', help='test and add a virtual folder')
    p.add_argument('name')
    server_args(p)
    p.add_argument('--color', type=int)
    p.set_defaults(func=cmd_add)

    p = sub.add_parser('update', help='change a virtual folder')
    p.add_argument('folder_id')
    p.add_argument('--name')
    server_args(p, required=False)
    p.add_argument('--color', type=int)
    p.set_defaults(func=cmd_update)

    p = sub.add_parser('remove', help='delete a virtual folder')
    p.add_argument('folder_id')
    p.add_argument('--keep-offline', action='store_true',
                   help='leave offline copies on disk')
    p.set_defaults(func=cmd_remove)

    p = sub.add_parser('folders', help='list virtual folders')
    p.set_defaults(func=cmd_folders)

    p = sub.add_parser('ls', help='list a remote directory')
    p.add_argument('folder_id')
    p.add_argument('path', nargs='?', default='/')
    p.set_defaults(func=cmd_ls)

    p = sub.add_parser('get', help='download a file for offline use')
    p.add_argument('folder_id')
    p.add_argument('remote_path')
    p.add_argument('--size', type=int, help='expected size in bytes')
    p.add_argument('-q', '--quiet', action='store_true')
    p.set_defaults(func=cmd_get)

    p = sub.add_parser('offline', help='list offline copies')
    p.add_argument('folder_id', nargs='?')
    p.set_defaults(func=cmd_offline)

    p = sub.add_parser('rm-offline', help='remove an offline copy')
    p.add_argument('target', help='offline file id, or folder id with --path')
    p.add_argument('--path', help='remote path of the file inside the folder')
    p.set_defaults(func=cmd_rm_offline)

    p = sub.add_parser('cleanup', help='prune stale and orphaned offline copies')
    p.set_defaults(func=cmd_cleanup)

    p = sub.add_parser('usage', help='offline storage usage')
    p.set_defaults(func=cmd_usage)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main application entry point."""
    args = build_parser().parse_args(argv)

    config = ConfigManager(args.data_dir)
    level = 'DEBUG' if args.verbose else config.get_setting('log_level', 'WARNING')
    setup_logging(log_dir=config.log_dir, level=level, console=args.verbose)
    logger.debug(f"Running command '{args.command}' with data dir {config.config_dir}")

    service = FolderService.from_config(config)
    try:
        return args.func(service, args)
    except KeyboardInterrupt:
        service.cancel_all_downloads()
        print("interrupted", file=sys.stderr)
        return 130
    except DavMountError as e:
        logger.error(f"{type(e).__name__}: {e}")
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
