"""Environment-driven settings for fetchkit clients.

This module defines settings that can be loaded from environment
variables (prefixed ``FETCHKIT_``) or a ``.env`` file and turned into
the immutable objects a :class:`~fetchkit.client.FetchClient` is built
from. The core never reads settings on its own; callers opt in.
"""

from typing import Dict, List, Literal, Optional, Sequence
from urllib.parse import urlsplit

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..client import Configuration, MetricsHandler
from ..utils.http.interceptors import Interceptor
from ..utils.http.retry import RetryPolicy
from ..utils.http.transport import (
    HttpxTransport,
    Transport,
    create_limits,
    create_timeout,
)
from ..utils.security import setup_logging


class FetchSettings(BaseSettings):
    """Client settings loaded from environment variables.

    Mapping and list fields are read from the environment as JSON, e.g.
    ``FETCHKIT_DEFAULT_HEADERS='{"Accept": "application/json"}'``.

    :param base_url: Base URL for relative request paths
    :type base_url: Optional[str]
    :param default_headers: Headers sent with every request
    :type default_headers: Dict[str, str]
    :param default_query: Query parameters sent with every request
    :type default_query: Dict[str, str]
    :param timeout: Read/write timeout in seconds
    :type timeout: float
    :param connect_timeout: Connect and pool timeout in seconds
    :type connect_timeout: float
    :param max_connections: Maximum total number of connections
    :type max_connections: int
    :param max_keepalive_connections: Maximum number of keepalive connections
    :type max_keepalive_connections: int
    :param http2: Enable HTTP/2 when ``h2`` is installed
    :type http2: bool
    :param follow_redirects: Follow redirects
    :type follow_redirects: bool
    :param retry_enabled: Enable retries
    :type retry_enabled: bool
    :param retry_max_retries: Maximum retries after the first attempt
    :type retry_max_retries: int
    :param retry_initial_backoff: Delay before the first retry, in seconds
    :type retry_initial_backoff: float
    :param retry_backoff_multiplier: Backoff growth factor
    :type retry_backoff_multiplier: float
    :param retry_jitter_min: Lower jitter multiplier
    :type retry_jitter_min: Optional[float]
    :param retry_jitter_max: Upper jitter multiplier
    :type retry_jitter_max: Optional[float]
    :param retry_status_codes: Status codes that are retried
    :type retry_status_codes: List[int]
    :param log_level: Logging level for :func:`fetchkit.utils.security.setup_logging`
    :type log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    """

    model_config = SettingsConfigDict(
        env_prefix="FETCHKIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    base_url: Optional[str] = Field(None, description="Base URL for relative paths")
    default_headers: Dict[str, str] = Field(
        default_factory=dict, description="Headers sent with every request"
    )
    default_query: Dict[str, str] = Field(
        default_factory=dict, description="Query parameters sent with every request"
    )

    # Transport
    timeout: float = Field(30.0, gt=0, description="Read/write timeout in seconds")
    connect_timeout: float = Field(5.0, gt=0, description="Connect timeout in seconds")
    max_connections: int = Field(20, ge=1, description="Maximum connections")
    max_keepalive_connections: int = Field(
        10, ge=0, description="Maximum keepalive connections"
    )
    http2: bool = Field(False, description="Enable HTTP/2")
    follow_redirects: bool = Field(True, description="Follow redirects")

    # Retry
    retry_enabled: bool = Field(False, description="Enable retries")
    retry_max_retries: int = Field(2, ge=0, description="Maximum retries")
    retry_initial_backoff: float = Field(
        0.2, ge=0, description="Delay before the first retry in seconds"
    )
    retry_backoff_multiplier: float = Field(
        2.0, gt=0, description="Backoff growth factor"
    )
    retry_jitter_min: Optional[float] = Field(
        None, ge=0, description="Lower jitter multiplier"
    )
    retry_jitter_max: Optional[float] = Field(
        None, ge=0, description="Upper jitter multiplier"
    )
    retry_status_codes: List[int] = Field(
        default_factory=lambda: [429, 500, 502, 503, 504],
        description="Status codes that are retried",
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        "INFO", description="Logging level"
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: Optional[str]) -> Optional[str]:
        """Require an absolute base URL.

        :param v: The configured base URL
        :type v: Optional[str]
        :return: The base URL, unchanged
        :rtype: Optional[str]
        :raises ValueError: If the URL has no scheme or host
        """
        if v is None or not v.strip():
            return None
        parts = urlsplit(v.strip())
        if not parts.scheme or not parts.netloc:
            raise ValueError(f"base_url must be an absolute URL, got {v!r}")
        return v.strip()

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v):
        return v.upper() if isinstance(v, str) else v

    @model_validator(mode="after")
    def validate_jitter(self) -> "FetchSettings":
        """Require both jitter bounds or neither, in order."""
        low, high = self.retry_jitter_min, self.retry_jitter_max
        if (low is None) != (high is None):
            raise ValueError("retry_jitter_min and retry_jitter_max must be set together")
        if low is not None and low > high:
            raise ValueError("retry_jitter_min must not exceed retry_jitter_max")
        return self

    def configure_logging(self) -> None:
        """Install sanitized root logging at ``log_level``."""
        setup_logging(self.log_level)

    def to_retry_policy(self) -> RetryPolicy:
        """Build the retry policy described by these settings.

        :return: Retry policy
        :rtype: RetryPolicy
        """
        jitter = None
        if self.retry_jitter_min is not None:
            jitter = (self.retry_jitter_min, self.retry_jitter_max)
        return RetryPolicy(
            enabled=self.retry_enabled,
            max_retries=self.retry_max_retries,
            initial_backoff=self.retry_initial_backoff,
            backoff_multiplier=self.retry_backoff_multiplier,
            jitter=jitter,
            retryable_status_codes=frozenset(self.retry_status_codes),
        )

    def create_transport(self) -> HttpxTransport:
        """Create an httpx transport with these timeouts and limits.

        :return: Transport owning a new ``httpx.AsyncClient``
        :rtype: HttpxTransport
        """
        return HttpxTransport(
            timeout=create_timeout(
                connect=self.connect_timeout,
                read=self.timeout,
                write=self.timeout,
                pool=self.connect_timeout,
            ),
            limits=create_limits(
                max_keepalive_connections=self.max_keepalive_connections,
                max_connections=self.max_connections,
            ),
            follow_redirects=self.follow_redirects,
            http2=self.http2,
        )

    def to_configuration(
        self,
        transport: Optional[Transport] = None,
        interceptors: Sequence[Interceptor] = (),
        metrics_handler: Optional[MetricsHandler] = None,
    ) -> Configuration:
        """Build a client configuration from these settings.

        :param transport: Transport to use; one is created when omitted
        :type transport: Optional[Transport]
        :param interceptors: Interceptors in execution order
        :type interceptors: Sequence[Interceptor]
        :param metrics_handler: Optional per-attempt metrics hook
        :type metrics_handler: Optional[MetricsHandler]
        :return: Immutable client configuration
        :rtype: Configuration
        """
        return Configuration(
            base_url=self.base_url,
            default_headers=self.default_headers,
            default_query=self.default_query,
            transport=transport or self.create_transport(),
            retry_policy=self.to_retry_policy(),
            interceptors=tuple(interceptors),
            metrics_handler=metrics_handler,
        )
