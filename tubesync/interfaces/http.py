import os
import logging
from typing import Any, Callable, Dict, List, Optional
from datetime import datetime
from urllib.parse import urlencode

from flask import Flask, Response, request, jsonify, stream_with_context
import requests

from tubesync.application.matching import TrackMatcher
from tubesync.application.pipeline import TransferPipeline
from tubesync.crosscutting.config import (
    ConfigError, SecretManager, get_search_limit, get_secret_manager, load_match_config,
)
from tubesync.crosscutting.reporting import to_sse
from tubesync.domain.entities import SourceItem
from tubesync.domain.errors import NotFound, PermanentFailure, ProviderError
from tubesync.domain.ports import DestinationCatalog, SourceLister
from tubesync.infrastructure.providers.spotify import SpotifyProvider
from tubesync.infrastructure.providers.youtube import YouTubeProvider, extract_playlist_id


TOKEN_COOKIE = 'spotify_access_token'
SPOTIFY_AUTHORIZE_URL = 'https://accounts.spotify.com/authorize'
SPOTIFY_TOKEN_URL = 'https://accounts.spotify.com/api/token'


class HTTPServer:
    """Web interface: Spotify OAuth, YouTube playlist lookup and transfer endpoints."""

    def __init__(self,
                 host: str = 'localhost',
                 port: int = 3000,
                 debug: bool = False,
                 secret_manager: Optional[SecretManager] = None,
                 source_factory: Optional[Callable[[], SourceLister]] = None,
                 destination_factory: Optional[Callable[[str], DestinationCatalog]] = None):
        """Initialize HTTP server.

        Args:
            host: Bind address
            port: Bind port
            debug: Flask debug mode
            secret_manager: Token/config store; the global one when omitted
            source_factory: Builds the YouTube lister
            destination_factory: Builds the Spotify client from a bearer token
        """
        self.host = host
        self.port = port
        self.debug = debug
        self.app = Flask(__name__)
        self.logger = logging.getLogger(__name__)

        self.version = "0.1.0"
        self.commit = os.getenv('GIT_COMMIT', 'unknown')

        self.secret_manager = secret_manager or get_secret_manager()
        self.source_factory = source_factory or self._default_source
        self.destination_factory = destination_factory or self._default_destination

        self._setup_routes()

    def _default_source(self) -> SourceLister:
        return YouTubeProvider(self.secret_manager.get_youtube_api_key())

    def _default_destination(self, token: str) -> DestinationCatalog:
        return SpotifyProvider(token, search_limit=get_search_limit())

    def _redirect_uri(self, client_config: Dict[str, Optional[str]]) -> str:
        return client_config.get('redirect_uri') or f'http://{self.host}:{self.port}/callback'

    def _access_token(self) -> Optional[str]:
        # Only the caller's own cookie; the token store belongs to the CLI user
        return request.cookies.get(TOKEN_COOKIE)

    def _items_from_payload(self, payload: Dict[str, Any]) -> List[SourceItem]:
        items = payload.get('items') if isinstance(payload, dict) else None
        if not isinstance(items, list):
            raise ValueError("'items' must be a list")
        return [
            SourceItem(
                id=str(item.get('videoId') or item.get('id') or ''),
                title=str(item.get('title') or ''),
                channel_title=str(item.get('channelTitle') or ''),
            )
            for item in items
            if isinstance(item, dict)
        ]

    def _create_pipeline(self, token: str) -> TransferPipeline:
        return TransferPipeline(
            destination=self.destination_factory(token),
            matcher=TrackMatcher(load_match_config()),
        )

    def _setup_routes(self) -> None:
        """Setup Flask routes."""

        @self.app.route('/health', methods=['GET'])
        def health_check():
            """Health check endpoint."""
            return jsonify({
                'status': 'healthy',
                'version': self.version,
                'commit': self.commit,
                'timestamp': datetime.now().isoformat()
            }), 200

        @self.app.route('/', methods=['GET'])
        def root():
            """Root endpoint with basic info."""
            return jsonify({
                'service': 'TubeSync HTTP Interface',
                'version': self.version,
                'endpoints': {
                    'health': '/health',
                    'spotify_auth': '/auth/spotify',
                    'oauth_callback': '/callback',
                    'youtube_playlist': '/api/youtube/playlist',
                    'spotify_me': '/api/spotify/me',
                    'transfer': '/api/spotify/transfer',
                    'transfer_stream': '/api/spotify/transfer-stream',
                }
            }), 200

        @self.app.route('/auth/spotify', methods=['GET'])
        def spotify_auth():
            """Return the Spotify authorization URL."""
            try:
                client_config = self.secret_manager.get_spotify_client_config()
            except ConfigError as e:
                return jsonify({'error': str(e)}), 500

            redirect_uri = self._redirect_uri(client_config)
            params = {
                'client_id': client_config['client_id'],
                'response_type': 'code',
                'redirect_uri': redirect_uri,
                'scope': self.secret_manager.get_spotify_scope_string(),
                'show_dialog': 'true',
            }
            return jsonify({
                'auth_url': f"{SPOTIFY_AUTHORIZE_URL}?{urlencode(params)}",
                'redirect_uri': redirect_uri
            }), 200

        @self.app.route('/callback', methods=['GET'])
        def oauth_callback():
            """OAuth callback endpoint for Spotify."""
            code = request.args.get('code')
            error = request.args.get('error')

            if error:
                self.logger.error(f"OAuth error: {error}")
                return jsonify({'error': 'OAuth authorization failed', 'details': error}), 400
            if not code:
                return jsonify({'error': 'Missing authorization code'}), 400

            try:
                client_config = self.secret_manager.get_spotify_client_config()
            except ConfigError as e:
                self.logger.error(f"OAuth callback without client credentials: {e}")
                return jsonify({'error': str(e)}), 500

            tokens = self._exchange_code_for_tokens(code, client_config)
            if not tokens:
                return jsonify({'error': 'Failed to exchange code for tokens'}), 500

            missing_scopes = self.secret_manager.get_missing_spotify_scopes(tokens.get('scope'))
            if missing_scopes:
                self.logger.error(f"Spotify authorization lacks scopes: {missing_scopes}")
                return jsonify({'error': 'Missing Spotify scopes', 'missing_scopes': missing_scopes}), 403

            self.secret_manager.save_spotify_tokens(
                tokens['access_token'],
                tokens.get('refresh_token'),
                expires_at=tokens.get('expires_at'),
                scope=tokens.get('scope'),
            )
            self.logger.info("OAuth tokens saved successfully")

            response = jsonify({
                'status': 'success',
                'message': 'Spotify connected',
                'timestamp': datetime.now().isoformat()
            })
            response.set_cookie(TOKEN_COOKIE, tokens['access_token'], httponly=True,
                                max_age=int(tokens.get('expires_in') or 3600), samesite='Lax')
            return response, 200

        @self.app.route('/api/youtube/playlist', methods=['GET'])
        def youtube_playlist():
            """List the items of a YouTube playlist."""
            playlist_id = extract_playlist_id(request.args.get('playlistId', ''))
            if not playlist_id:
                return jsonify({'error': 'Missing playlistId'}), 400

            try:
                items = list(self.source_factory().list_items(playlist_id))
            except NotFound as e:
                return jsonify({'error': str(e)}), 404
            except ProviderError as e:
                self.logger.error(f"Failed to list playlist {playlist_id}: {e}")
                return jsonify({'error': str(e)}), 502

            return jsonify({
                'items': [
                    {'videoId': i.id, 'title': i.title, 'channelTitle': i.channel_title}
                    for i in items
                ]
            }), 200

        @self.app.route('/api/spotify/me', methods=['GET'])
        def spotify_me():
            """Return the connected Spotify user."""
            token = self._access_token()
            if not token:
                return jsonify({'error': 'Not authenticated with Spotify'}), 401
            try:
                user = self.destination_factory(token).current_user()
            except PermanentFailure as e:
                return jsonify({'error': str(e)}), 401
            except ProviderError as e:
                self.logger.error(f"Failed to fetch Spotify user: {e}")
                return jsonify({'error': str(e)}), 502
            return jsonify({
                'connected': True,
                'user': {
                    'id': user.get('id'),
                    'display_name': user.get('display_name'),
                    'email': user.get('email'),
                },
            }), 200

        @self.app.route('/api/spotify/transfer', methods=['POST'])
        def transfer():
            """Run a whole transfer and return the summary."""
            token = self._access_token()
            if not token:
                return jsonify({'error': 'Not authenticated with Spotify'}), 401

            payload = request.get_json(silent=True) or {}
            try:
                items = self._items_from_payload(payload)
            except ValueError as e:
                return jsonify({'error': str(e)}), 400

            try:
                outcome = self._create_pipeline(token).transfer(items, payload.get('playlistName'))
            except Exception as e:
                self.logger.error(f"Transfer error: {e}")
                return jsonify({'error': str(e) or 'Unknown error occurred'}), 500

            return jsonify({
                'playlistUrl': outcome.playlist_url,
                'added': outcome.added_count,
                'skipped': [s.title for s in outcome.skipped],
            }), 200

        @self.app.route('/api/spotify/transfer-stream', methods=['POST'])
        def transfer_stream():
            """Run a transfer, streaming progress as server-sent events."""
            token = self._access_token()
            if not token:
                return jsonify({'error': 'Not authenticated with Spotify'}), 401

            payload = request.get_json(silent=True) or {}
            try:
                items = self._items_from_payload(payload)
            except ValueError as e:
                return jsonify({'error': str(e)}), 400

            pipeline = self._create_pipeline(token)
            events = pipeline.iter_transfer(items, payload.get('playlistName'))

            def generate():
                for event in events:
                    yield to_sse(event)

            return Response(
                stream_with_context(generate()),
                mimetype='text/event-stream',
                headers={'Cache-Control': 'no-cache', 'Connection': 'keep-alive'},
            )

    def _exchange_code_for_tokens(self, code: str,
                                  client_config: Dict[str, Optional[str]]) -> Optional[Dict[str, Any]]:
        """Exchange authorization code for access and refresh tokens."""
        data = {
            'grant_type': 'authorization_code',
            'code': code,
            'redirect_uri': self._redirect_uri(client_config),
            'client_id': client_config['client_id'],
            'client_secret': client_config['client_secret']
        }

        try:
            response = requests.post(SPOTIFY_TOKEN_URL, data=data, timeout=15)
        except requests.RequestException as e:
            self.logger.error(f"Token exchange error: {e}")
            return None

        if response.status_code != 200:
            self.logger.error(f"Token exchange failed: {response.status_code} - {response.text}")
            return None

        tokens = response.json()
        expires_in = tokens.get('expires_in', 3600)
        return {
            'access_token': tokens.get('access_token'),
            'refresh_token': tokens.get('refresh_token'),
            'expires_in': expires_in,
            'token_type': tokens.get('token_type', 'Bearer'),
            'scope': tokens.get('scope'),
            'expires_at': datetime.now().timestamp() + expires_in
        }

    def run(self) -> None:
        """Run the HTTP server."""
        self.logger.info(f"Starting TubeSync HTTP server on {self.host}:{self.port}")
        self.app.run(
            host=self.host,
            port=self.port,
            debug=self.debug
        )


def create_app(**kwargs) -> Flask:
    """Create Flask app (used by tests and WSGI servers)."""
    server = HTTPServer(**kwargs)
    return server.app


if __name__ == '__main__':
    HTTPServer().run()
