"""k1s0 id_token_verifier library."""

from .cache import KeySetCache
from .config import IdTokenVerifierConfig
from .events import EventEmitter, EventHook, EventNames, VerifierEvent
from .exceptions import (
    ClaimsDeserializationError,
    ClaimsValidationError,
    ConfigError,
    DiscoveryError,
    ErrorCodes,
    FetchError,
    IdTokenVerifierError,
    InvalidSignatureError,
    KeyFetchFailedError,
    KeyNotFoundError,
    MalformedTokenError,
    MissingKeyIdError,
    RefreshError,
    VerificationError,
)
from .fetcher import HttpJwksFetcher, JwksFetcher
from .jwks import parse_jwks
from .key_source import KeySourceResolver
from .loader import from_env, load, load_with_env
from .logger import new_logger
from .metrics import OtelMetricsHook
from .models import (
    AutoDiscoverKeySource,
    CacheEntry,
    DirectKeySource,
    KeySource,
    SigningKey,
    SigningKeySet,
    ValidationOptions,
)
from .refresher import BackgroundRefresher
from .retry import ConstantBackoff, ExponentialBackoff, NoRetry, RetryPolicy, with_retry
from .validation import validate_claims
from .verifier import IdTokenVerifier

__all__ = [
    "IdTokenVerifier",
    "IdTokenVerifierConfig",
    "ValidationOptions",
    "DirectKeySource",
    "AutoDiscoverKeySource",
    "KeySource",
    "SigningKey",
    "SigningKeySet",
    "CacheEntry",
    "KeySetCache",
    "KeySourceResolver",
    "BackgroundRefresher",
    "JwksFetcher",
    "HttpJwksFetcher",
    "parse_jwks",
    "validate_claims",
    "RetryPolicy",
    "NoRetry",
    "ConstantBackoff",
    "ExponentialBackoff",
    "with_retry",
    "EventEmitter",
    "EventHook",
    "EventNames",
    "VerifierEvent",
    "OtelMetricsHook",
    "load",
    "load_with_env",
    "from_env",
    "new_logger",
    "IdTokenVerifierError",
    "ErrorCodes",
    "FetchError",
    "DiscoveryError",
    "RefreshError",
    "VerificationError",
    "MalformedTokenError",
    "MissingKeyIdError",
    "KeyNotFoundError",
    "InvalidSignatureError",
    "ClaimsValidationError",
    "ClaimsDeserializationError",
    "KeyFetchFailedError",
    "ConfigError",
]
