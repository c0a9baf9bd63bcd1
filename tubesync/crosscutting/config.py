import os
import json
from typing import Dict, Any, Mapping, Optional
from pathlib import Path

from dotenv import dotenv_values

from tubesync.application.matching import MatchConfig
from tubesync.domain.title_parser import DEFAULT_NOISE_PHRASES


DEFAULT_SEARCH_LIMIT = 15


class ConfigError(Exception):
    """Configuration error."""
    pass


class SecretManager:
    """Manages application secrets and configuration."""

    def __init__(self, config_dir: Optional[str] = None):
        """Initialize secret manager."""
        self.config_dir = Path(config_dir) if config_dir else Path.home() / '.tubesync'
        self.config_dir.mkdir(parents=True, exist_ok=True)

        self.tokens_file = self.config_dir / 'tokens.json'
        self.env_file = self.config_dir / '.env'

    def get_spotify_scopes(self) -> list:
        """Get minimal required Spotify scopes."""
        return [
            'playlist-modify-public',     # Create/modify public playlists
            'playlist-modify-private',    # Create/modify private playlists
            'user-read-private',          # Resolve the current user id
        ]

    def get_spotify_scope_string(self) -> str:
        """Get Spotify scopes as space-separated string."""
        return ' '.join(self.get_spotify_scopes())

    def get_missing_spotify_scopes(self, scopes: str) -> list:
        """Get list of missing required Spotify scopes."""
        provided_scopes = set((scopes or '').split())
        return [s for s in self.get_spotify_scopes() if s not in provided_scopes]

    def load_tokens(self) -> Dict[str, Any]:
        """Load tokens from tokens.json file."""
        if not self.tokens_file.exists():
            return {}

        try:
            with open(self.tokens_file, 'r') as f:
                return json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            raise ConfigError(f"Failed to load tokens from {self.tokens_file}: {e}")

    def save_tokens(self, tokens: Dict[str, Any]) -> None:
        """Merge tokens into tokens.json file."""
        existing_tokens = self.load_tokens()
        existing_tokens.update(tokens)

        try:
            with open(self.tokens_file, 'w') as f:
                json.dump(existing_tokens, f, indent=2, ensure_ascii=False)
        except IOError as e:
            raise ConfigError(f"Failed to save tokens to {self.tokens_file}: {e}")

    def get_spotify_tokens(self) -> Optional[Dict[str, Any]]:
        """Get Spotify tokens from tokens.json."""
        return self.load_tokens().get('spotify')

    def get_spotify_token(self) -> Optional[str]:
        """Get the Spotify access token from tokens.json."""
        tokens = self.get_spotify_tokens() or {}
        return tokens.get('access_token')

    def save_spotify_tokens(self, access_token: str, refresh_token: Optional[str] = None,
                            **extra: Any) -> None:
        """Save Spotify tokens."""
        self.save_tokens({
            'spotify': {
                'access_token': access_token,
                'refresh_token': refresh_token,
                **extra,
            }
        })

    def load_env_vars(self) -> Dict[str, str]:
        """Load variables from the .env file in the config directory."""
        if not self.env_file.exists():
            return {}
        return {k: v for k, v in dotenv_values(self.env_file).items() if v is not None}

    def _lookup(self, key: str) -> Optional[str]:
        """Process environment first, then the .env file."""
        value = os.getenv(key)
        if value:
            return value
        return self.load_env_vars().get(key) or None

    def get_spotify_client_config(self) -> Dict[str, Optional[str]]:
        """Spotify app credentials for the OAuth flow.

        redirect_uri may be None; the web server then derives one from its own address.

        Raises:
            ConfigError: If the client id or secret is missing
        """
        config = {
            'client_id': self._lookup('SPOTIFY_CLIENT_ID'),
            'client_secret': self._lookup('SPOTIFY_CLIENT_SECRET'),
            'redirect_uri': self._lookup('SPOTIFY_REDIRECT_URI'),
        }
        for key in ('client_id', 'client_secret'):
            if not config[key]:
                raise ConfigError(f"SPOTIFY_{key.upper()} not found in environment")
        return config

    def get_youtube_api_key(self) -> str:
        """Get the YouTube Data API key."""
        api_key = self._lookup('YOUTUBE_API_KEY')
        if not api_key:
            raise ConfigError("YOUTUBE_API_KEY not found in environment")
        return api_key

    def get_spotify_access_token(self) -> Optional[str]:
        """Spotify bearer token from the environment, else from tokens.json."""
        return self._lookup('SPOTIFY_ACCESS_TOKEN') or self.get_spotify_token()

    def validate_configuration(self) -> Dict[str, bool]:
        """Validate that all required configuration is present."""
        return {
            'spotify_client_id': bool(self._lookup('SPOTIFY_CLIENT_ID')),
            'spotify_client_secret': bool(self._lookup('SPOTIFY_CLIENT_SECRET')),
            'spotify_redirect_uri': bool(self._lookup('SPOTIFY_REDIRECT_URI')),
            'youtube_api_key': bool(self._lookup('YOUTUBE_API_KEY')),
            'spotify_tokens': bool(self.get_spotify_access_token()),
        }

    def get_config_summary(self) -> Dict[str, Any]:
        """Get configuration summary (without sensitive data)."""
        validation = self.validate_configuration()

        return {
            'config_dir': str(self.config_dir),
            'tokens_file': str(self.tokens_file),
            'env_file': str(self.env_file),
            'validation': validation,
            'spotify_scopes': self.get_spotify_scopes(),
            'has_spotify_tokens': validation['spotify_tokens'],
            'has_youtube_api_key': validation['youtube_api_key'],
        }

    def clear_tokens(self) -> None:
        """Clear all stored tokens."""
        if self.tokens_file.exists():
            self.tokens_file.unlink()


def _parse_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or not str(raw).strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{key} must be a number, got {raw!r}")
    if value < 0:
        raise ConfigError(f"{key} must not be negative, got {raw!r}")
    return value


def load_match_config(env: Optional[Mapping[str, str]] = None) -> MatchConfig:
    """Build the matching configuration, overriding defaults from TUBESYNC_* variables."""
    env = os.environ if env is None else env
    defaults = MatchConfig()

    noise_phrases = DEFAULT_NOISE_PHRASES
    raw_phrases = env.get('TUBESYNC_NOISE_PHRASES')
    if raw_phrases is not None and raw_phrases.strip():
        noise_phrases = tuple(p.strip().lower() for p in raw_phrases.split(',') if p.strip())

    return MatchConfig(
        noise_phrases=noise_phrases,
        acceptance_threshold=_parse_float(env, 'TUBESYNC_ACCEPTANCE_THRESHOLD', defaults.acceptance_threshold),
        title_weight=_parse_float(env, 'TUBESYNC_TITLE_WEIGHT', defaults.title_weight),
        artist_weight=_parse_float(env, 'TUBESYNC_ARTIST_WEIGHT', defaults.artist_weight),
    )


def get_search_limit(env: Optional[Mapping[str, str]] = None) -> int:
    """Number of search results requested per query (TUBESYNC_SEARCH_LIMIT, 1-50)."""
    env = os.environ if env is None else env
    raw = env.get('TUBESYNC_SEARCH_LIMIT')
    if raw is None or not str(raw).strip():
        return DEFAULT_SEARCH_LIMIT
    try:
        limit = int(raw)
    except ValueError:
        raise ConfigError(f"TUBESYNC_SEARCH_LIMIT must be an integer, got {raw!r}")
    if not 1 <= limit <= 50:
        raise ConfigError(f"TUBESYNC_SEARCH_LIMIT must be between 1 and 50, got {limit}")
    return limit


_secret_manager: Optional[SecretManager] = None


def get_secret_manager() -> SecretManager:
    """Get global secret manager instance, created on first use."""
    global _secret_manager
    if _secret_manager is None:
        _secret_manager = SecretManager()
    return _secret_manager


def setup_config(config_dir: Optional[str] = None) -> SecretManager:
    """Setup configuration with custom directory."""
    global _secret_manager
    _secret_manager = SecretManager(config_dir)
    return _secret_manager
