"""SSM Parameter Store access for Lyra credentials.

Values are cached per process for SSM_CACHE_TTL_SECONDS (default 300) so a
warm Lambda picks up rotated shop keys without a redeploy. A ParameterNotFound
result is cached for the same TTL.
"""

import logging
import os
import time
from functools import lru_cache

import boto3
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL_SECONDS = 300.0

# Cached in place of a value when SSM reported ParameterNotFound
_NOT_FOUND = object()


class SSMServiceError(Exception):
    """Raised when a parameter cannot be read.

    ``not_found`` distinguishes a missing parameter (often optional) from
    permission or service failures.
    """

    def __init__(self, message: str, not_found: bool = False) -> None:
        super().__init__(message)
        self.not_found = not_found


def _not_found(name: str) -> SSMServiceError:
    return SSMServiceError(f"SSM parameter not found: {name}", not_found=True)


class SSMService:
    """Reads SecureString parameters with decryption and a TTL cache.

    Usage:
        ssm = get_ssm_service()
        password = ssm.get_parameter("/payments/dev/lyra/test/password")
    """

    def __init__(self, cache_ttl: float | None = None) -> None:
        self._client = boto3.client("ssm")
        self._ttl = (
            cache_ttl
            if cache_ttl is not None
            else float(os.environ.get("SSM_CACHE_TTL_SECONDS", DEFAULT_CACHE_TTL_SECONDS))
        )
        self._cache: dict[str, tuple[float, object]] = {}

    def _cached(self, name: str) -> object | None:
        entry = self._cache.get(name)
        if entry is None:
            return None
        stored_at, value = entry
        if time.monotonic() - stored_at > self._ttl:
            del self._cache[name]
            return None
        return value

    def get_parameter(self, name: str, *, use_cache: bool = True) -> str:
        """Read one decrypted parameter.

        Args:
            name: Full parameter path
            use_cache: Serve from the cache when the entry is fresh

        Raises:
            SSMServiceError: Missing parameter (``not_found``), access denied
                or any other SSM failure.
        """
        if use_cache:
            cached = self._cached(name)
            if cached is _NOT_FOUND:
                raise _not_found(name)
            if cached is not None:
                return str(cached)

        try:
            response = self._client.get_parameter(Name=name, WithDecryption=True)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "Unknown")
            if code == "ParameterNotFound":
                self._cache[name] = (time.monotonic(), _NOT_FOUND)
                raise _not_found(name) from e
            if code == "AccessDeniedException":
                raise SSMServiceError(
                    f"Access denied to SSM parameter {name}; the role needs "
                    "ssm:GetParameter and kms:Decrypt"
                ) from e
            raise SSMServiceError(f"Failed to read SSM parameter {name}: {code}") from e

        value: str = response["Parameter"]["Value"]
        self._cache[name] = (time.monotonic(), value)
        logger.debug("SSM parameter loaded: %s", name)
        return value


@lru_cache(maxsize=1)
def get_ssm_service() -> SSMService:
    """Get the shared SSMService instance."""
    return SSMService()


def reset_ssm_service() -> None:
    """Drop the shared instance and its cache (for testing only)."""
    get_ssm_service.cache_clear()
