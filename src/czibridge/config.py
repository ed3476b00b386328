"""czibridge configuration using pydantic-settings.

All configuration is strongly typed and supports environment variables
and .env files.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigError(Exception):
    """Raised when required configuration is missing or invalid.

    Example:
        >>> Settings(_env_file=None).require_library_path()  # doctest: +ELLIPSIS
        Traceback (most recent call last):
        ...
        ConfigError: libCZIApi library path not configured. Set it in .env file or
        LIBCZI_LIBRARY environment variable.
    """

    def __init__(self, key_name: str, env_var: str) -> None:
        """Initialize configuration error.

        Args:
            key_name: Human-readable name of the missing key.
            env_var: Environment variable name to set.
        """
        self.key_name = key_name
        self.env_var = env_var
        message = (
            f"{key_name} not configured. "
            f"Set it in .env file or {env_var} environment variable."
        )
        super().__init__(message)


class Settings(BaseSettings):
    """Application settings loaded from environment variables or .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Native library (file name or absolute path); None = platform default
    LIBCZI_LIBRARY: str | None = None

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "console"  # "console" or "json"

    # Writer defaults (bytes reserved up front for directories/segments)
    WRITER_RESERVED_SUBBLOCK_DIRECTORY: int = 0
    WRITER_RESERVED_ATTACHMENT_DIRECTORY: int = 0
    WRITER_RESERVED_METADATA: int = 0

    def require_library_path(self) -> str:
        """Get the configured native library location.

        Use this when a caller insists on an explicit library rather than the
        platform default lookup.

        Returns:
            The configured library name or path.

        Raises:
            ConfigError: If LIBCZI_LIBRARY is not configured.
        """
        value = self.LIBCZI_LIBRARY
        if value is None or value.strip() == "":
            raise ConfigError("libCZIApi library path", "LIBCZI_LIBRARY")
        return value


# Singleton instance for import convenience
settings = Settings()
