import argparse
import json
import logging
import os
import sys
import time
from datetime import datetime
from typing import Optional

from dotenv import load_dotenv

from tubesync.application.matching import TrackMatcher
from tubesync.application.pipeline import DEFAULT_PLAYLIST_NAME, TransferPipeline
from tubesync.crosscutting.config import (
    ConfigError, SecretManager, get_search_limit, get_secret_manager, load_match_config, setup_config,
)
from tubesync.crosscutting.logging import (
    CorrelationContext, log_error, log_transfer_complete, log_transfer_start, setup_logging,
)
from tubesync.crosscutting.reporting import format_event, write_report
from tubesync.domain.entities import SourceItem
from tubesync.domain.errors import ProviderError
from tubesync.infrastructure.providers.spotify import SpotifyProvider
from tubesync.infrastructure.providers.youtube import YouTubeProvider, extract_playlist_id


class CLI:
    """Command Line Interface for TubeSync."""

    def __init__(self, secret_manager: Optional[SecretManager] = None):
        self.parser = self._create_parser()
        self._secret_manager = secret_manager
        self._start_time = None

    @property
    def secret_manager(self) -> SecretManager:
        if self._secret_manager is None:
            self._secret_manager = get_secret_manager()
        return self._secret_manager

    def _create_parser(self) -> argparse.ArgumentParser:
        """Create argument parser."""
        parser = argparse.ArgumentParser(
            prog='tubesync',
            description='Transfer YouTube playlists to Spotify'
        )

        subparsers = parser.add_subparsers(dest='command', help='Available commands')

        transfer_parser = subparsers.add_parser('transfer', help='Transfer a YouTube playlist to Spotify')
        transfer_parser.add_argument(
            '--playlist',
            required=True,
            help='YouTube playlist URL or ID'
        )
        transfer_parser.add_argument(
            '--name',
            default=DEFAULT_PLAYLIST_NAME,
            help=f'Name of the Spotify playlist to create (default: {DEFAULT_PLAYLIST_NAME})'
        )
        transfer_parser.add_argument(
            '--public',
            action='store_true',
            help='Create a public playlist (default: private)'
        )
        transfer_parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Match tracks without creating or modifying a playlist'
        )
        transfer_parser.add_argument(
            '--job-id',
            help='Unique job identifier for this transfer'
        )
        transfer_parser.add_argument(
            '--report-path',
            default='reports/',
            help='Path to save reports (default: reports/)'
        )

        items_parser = subparsers.add_parser('items', help='List the items of a YouTube playlist')
        items_parser.add_argument(
            '--playlist',
            required=True,
            help='YouTube playlist URL or ID'
        )

        parse_parser = subparsers.add_parser('parse', help='Show how a video title is parsed')
        parse_parser.add_argument('title', help='Video title')
        parse_parser.add_argument(
            '--channel',
            default='',
            help='Channel name used as artist fallback'
        )

        subparsers.add_parser('config', help='Show which credentials and tokens are configured')
        subparsers.add_parser('logout', help='Remove the stored Spotify tokens')

        for sub in subparsers.choices.values():
            sub.add_argument(
                '--config-dir',
                help='Directory holding tokens.json and .env (default: ~/.tubesync)'
            )
            sub.add_argument(
                '--log-level',
                choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                default='WARNING',
                help='Set logging level'
            )

        return parser

    def _create_job_id(self) -> str:
        """Create unique job identifier."""
        return f"tubesync_{datetime.now().strftime('%Y%m%d_%H%M%S')}"

    def _resolve_playlist_id(self, value: str) -> str:
        playlist_id = extract_playlist_id(value)
        if not playlist_id:
            raise ValueError(f"Not a YouTube playlist URL or ID: {value}")
        return playlist_id

    def _create_source_provider(self) -> YouTubeProvider:
        return YouTubeProvider(self.secret_manager.get_youtube_api_key())

    def _create_destination_provider(self) -> SpotifyProvider:
        token = self.secret_manager.get_spotify_access_token()
        if not token:
            raise ValueError("SPOTIFY_ACCESS_TOKEN is required (or authorize via the web interface)")
        return SpotifyProvider(token, search_limit=get_search_limit())

    def _transfer(self, args: argparse.Namespace) -> int:
        logger = logging.getLogger(__name__)

        job_id = args.job_id or self._create_job_id()
        playlist_id = self._resolve_playlist_id(args.playlist)

        source = self._create_source_provider()
        # Dry runs still search the destination, so a token is always needed
        destination = self._create_destination_provider()

        items = list(source.list_items(playlist_id))
        if not items:
            print("Playlist is empty, nothing to transfer")
            return 0

        matcher = TrackMatcher(load_match_config())
        pipeline = TransferPipeline(destination=destination, matcher=matcher)

        with CorrelationContext(job_id=job_id, playlist_id=playlist_id, stage='transfer'):
            log_transfer_start(logger, job_id, playlist_id, len(items), dry_run=args.dry_run)
            try:
                outcome = pipeline.transfer(
                    items,
                    playlist_name=args.name,
                    is_public=args.public,
                    on_event=lambda event: print(format_event(event)),
                    dry_run=args.dry_run,
                )
            except Exception as e:
                log_error(logger, "Transfer failed", e, job_id=job_id)
                return 1

            log_transfer_complete(logger, job_id, outcome.added_count, outcome.skipped_count)

        report_file = write_report(outcome, args.report_path, job_id, dry_run=args.dry_run)
        print(f"Report saved to: {report_file}")
        return 0

    def _list_items(self, args: argparse.Namespace) -> int:
        playlist_id = self._resolve_playlist_id(args.playlist)
        source = self._create_source_provider()

        count = 0
        for item in source.list_items(playlist_id):
            count += 1
            print(f"{item.id}: {item.title} [{item.channel_title}]")
        print(f"{count} items")
        return 0

    def _parse_title(self, args: argparse.Namespace) -> int:
        matcher = TrackMatcher(load_match_config())
        parsed = matcher.parser.parse(args.title)
        artist = matcher.effective_artist(parsed, SourceItem(id='', title=args.title, channel_title=args.channel))

        print(f"artist:           {parsed.artist or '-'}")
        print(f"track:            {parsed.track or '-'}")
        print(f"effective artist: {artist or '-'}")
        return 0

    def _show_config(self, args: argparse.Namespace) -> int:
        summary = self.secret_manager.get_config_summary()
        print(json.dumps(summary, indent=2))

        missing = [name for name, present in summary['validation'].items() if not present]
        if missing:
            print(f"Not configured: {', '.join(missing)}")
        return 0

    def _logout(self, args: argparse.Namespace) -> int:
        self.secret_manager.clear_tokens()
        print(f"Removed stored tokens from {self.secret_manager.tokens_file}")
        return 0

    def run(self, argv=None) -> int:
        """Run the CLI and return the exit code."""
        self._start_time = time.time()
        args = self.parser.parse_args(argv)

        if not args.command:
            self.parser.print_help()
            return 1

        setup_logging(args.log_level, structured=False)
        logger = logging.getLogger(__name__)

        if args.config_dir:
            self._secret_manager = setup_config(args.config_dir)

        try:
            if args.command == 'transfer':
                return self._transfer(args)
            if args.command == 'items':
                return self._list_items(args)
            if args.command == 'parse':
                return self._parse_title(args)
            if args.command == 'config':
                return self._show_config(args)
            if args.command == 'logout':
                return self._logout(args)
            self.parser.print_help()
            return 1
        except KeyboardInterrupt:
            logger.warning("Operation cancelled by user")
            return 130
        except (ConfigError, ValueError) as e:
            print(f"Error: {e}", file=sys.stderr)
            return 2
        except ProviderError as e:
            logger.error(f"Catalog error: {e}")
            print(f"Error: {e}", file=sys.stderr)
            return 1
        except Exception as e:
            logger.error(f"CLI error: {e}")
            print(f"Error: {e}", file=sys.stderr)
            return 1
        finally:
            logger.debug(f"CLI execution time: {time.time() - self._start_time:.2f}s")


def main():
    """Main entry point."""
    load_dotenv(os.path.join(os.getcwd(), '.env'))
    sys.exit(CLI().run())


if __name__ == '__main__':
    main()
