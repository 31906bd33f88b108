"""
Command-line interface for the uploader.
"""
import argparse
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import List, Optional

from tqdm import tqdm

from .client import UploadClient
from .config import ProfileStore, resolve_credentials
from .errors import AuthError, ConfigError, NetworkError, ScanError, ServerError, UploaderError
from .models import DEFAULT_CONCURRENCY, Failed, RunSummary, ScanOptions, SessionContext, UploadJob
from .reporter import ResultReporter
from .scheduler import run_upload

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_PARTIAL = 2


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the application.

    Args:
        verbose: Whether to enable debug logging
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def handle_upload(args: argparse.Namespace, store: ProfileStore) -> int:
    """Handle the upload command.

    Args:
        args: Command line arguments
        store: Loaded profile store

    Returns:
        Process exit code
    """
    server_url, api_key = resolve_credentials(store, args.server, args.key, args.user)
    session = SessionContext(
        server_url=server_url,
        api_key=api_key,
        concurrency_limit=args.concurrent,
    )
    options = ScanOptions(
        recursive=args.recursive,
        media_only=not args.all_files,
        library_id=args.library_id,
    )

    client = UploadClient(session)
    client.ping()
    logger.info(f"Connected to {server_url}")

    cancel_event = threading.Event()

    def interrupt(signum, frame):
        if cancel_event.is_set():
            raise KeyboardInterrupt
        logger.warning("Interrupted; finishing in-flight uploads (Ctrl-C again to force)")
        cancel_event.set()

    previous = signal.signal(signal.SIGINT, interrupt)
    try:
        with tqdm(unit="file", desc="Uploading", disable=args.no_progress) as bar:
            def on_result(job: UploadJob) -> None:
                bar.update(1)
                if isinstance(job.outcome, Failed):
                    bar.write(f"Failed to upload {job.path}: {job.outcome.message}")

            summary = run_upload(
                Path(args.directory), session, options,
                client=client, cancel_event=cancel_event, on_result=on_result,
            )
    finally:
        signal.signal(signal.SIGINT, previous)

    print(ResultReporter.render(summary))
    return exit_code_for(summary)


def exit_code_for(summary: RunSummary) -> int:
    """Any failed or never-processed file makes the run partial."""
    if summary.failed or summary.cancelled:
        return EXIT_PARTIAL
    return EXIT_OK


def handle_user(args: argparse.Namespace, store: ProfileStore) -> int:
    """Handle the user subcommands.

    Args:
        args: Command line arguments
        store: Loaded profile store

    Returns:
        Process exit code
    """
    if args.user_command == 'add':
        store.add(args.name, args.server.rstrip('/'), args.key, make_default=args.default)
        store.save()
        print(f"User '{args.name}' added successfully.")
    elif args.user_command == 'list':
        profiles = store.profiles()
        if not profiles:
            print("No users configured.")
        else:
            print("Users:")
            for name, profile, is_default in profiles:
                marker = "*" if is_default else " "
                print(f" {marker} {name}: {profile.server_url}")
    elif args.user_command == 'delete':
        store.remove(args.name)
        store.save()
        print(f"User '{args.name}' deleted.")
    elif args.user_command == 'default':
        store.set_default(args.name)
        store.save()
        print(f"Default user set to '{args.name}'.")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="immich-uploader",
        description="Upload photos and videos to an Immich server"
    )
    parser.add_argument('-v', '--verbose', action='store_true',
                        help="Enable verbose logging")
    parser.add_argument('--config', type=Path,
                        help="Path to the profile file (default: ~/.immich/config.json)")
    parser.add_argument('-s', '--server', type=str,
                        help="Immich server URL, e.g. http://192.168.1.10:2283")
    parser.add_argument('-k', '--key', type=str,
                        help="Immich API key")
    parser.add_argument('-u', '--user', type=str,
                        help="Use a stored profile instead of the default one")
    parser.add_argument('-c', '--concurrent', type=positive_int,
                        default=DEFAULT_CONCURRENCY,
                        help="Number of concurrent uploads")

    subparsers = parser.add_subparsers(dest='command', required=True)

    upload_parser = subparsers.add_parser('upload',
                                          help="Upload a directory")
    upload_parser.add_argument('directory', type=str,
                               help="Directory to scan for media files")
    upload_parser.add_argument('--no-recursive', dest='recursive',
                               action='store_false',
                               help="Only upload the directory's own files")
    upload_parser.add_argument('--all-files', action='store_true',
                               help="Upload every file, not just photos and videos")
    upload_parser.add_argument('--library-id', type=str,
                               help="Stable name for this directory in asset ids "
                                    "(default: its absolute path); keep it when the "
                                    "library moves so re-uploads are still detected")
    upload_parser.add_argument('--no-progress', action='store_true',
                               help="Hide the progress bar")

    user_parser = subparsers.add_parser('user',
                                        help="Manage stored credentials")
    user_sub = user_parser.add_subparsers(dest='user_command', required=True)

    add_parser = user_sub.add_parser('add', help="Add a user profile")
    add_parser.add_argument('name', type=str)
    add_parser.add_argument('-s', '--server', type=str, required=True)
    add_parser.add_argument('-k', '--key', type=str, required=True)
    add_parser.add_argument('-d', '--default', action='store_true',
                            help="Make this the default profile")

    user_sub.add_parser('list', help="List user profiles")

    delete_parser = user_sub.add_parser('delete', help="Delete a user profile")
    delete_parser.add_argument('name', type=str)

    default_parser = user_sub.add_parser('default', help="Set the default profile")
    default_parser.add_argument('name', type=str)

    return parser


def positive_int(value: str) -> int:
    number = int(value)
    if number <= 0:
        raise argparse.ArgumentTypeError("must be greater than zero")
    return number


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the CLI."""
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    try:
        store = ProfileStore.load(args.config)
        if args.command == 'upload':
            code = handle_upload(args, store)
        else:
            code = handle_user(args, store)
    except ScanError as e:
        logger.error(f"Cannot scan directory: {e}")
        code = EXIT_FATAL
    except AuthError as e:
        logger.error(f"Authentication failed, check the API key: {e}")
        code = EXIT_FATAL
    except (NetworkError, ServerError) as e:
        logger.error(f"Failed to connect to Immich server: {e}")
        code = EXIT_FATAL
    except ConfigError as e:
        logger.error(str(e))
        code = EXIT_FATAL
    except UploaderError as e:
        logger.error(f"Error: {e}")
        code = EXIT_FATAL
    except KeyboardInterrupt:
        logger.warning("Upload aborted by user")
        code = EXIT_FATAL

    sys.exit(code)


if __name__ == '__main__':
    main()
