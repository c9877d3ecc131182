"""Lyra gateway configuration.

Non-secret settings come from environment variables; credentials are read
from SSM Parameter Store, one set per shop mode:

    {LYRA_PARAMETER_PREFIX}/{ENVIRONMENT}/lyra/{mode}/username
    {LYRA_PARAMETER_PREFIX}/{ENVIRONMENT}/lyra/{mode}/password
    {LYRA_PARAMETER_PREFIX}/{ENVIRONMENT}/lyra/{mode}/hmac_key
    {LYRA_PARAMETER_PREFIX}/{ENVIRONMENT}/lyra/{mode}/public_key
    {LYRA_PARAMETER_PREFIX}/{ENVIRONMENT}/lyra/{mode}/endpoint         (optional)
    {LYRA_PARAMETER_PREFIX}/{ENVIRONMENT}/lyra/{mode}/script_base_url  (optional)
"""

import logging
import os
from functools import lru_cache

from pydantic import BaseModel, ConfigDict

from lyra_shared.models.enums import HashKeyType, LyraMode

from .signature import SigningKey
from .ssm_service import SSMService, SSMServiceError, get_ssm_service

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://api.lyra.com/api-payment/V4/"
DEFAULT_SCRIPT_BASE_URL = "https://static.lyra.com/static/js/krypton-client/V4.0"

# SSM parameter holding the secret for each kr-hash-key value
KEY_TYPE_PARAMETERS: dict[HashKeyType, str] = {
    HashKeyType.PASSWORD: "password",
    HashKeyType.SHA256_HMAC: "hmac_key",
}

_TRUTHY = {"1", "true", "yes", "on"}


class LyraConfigError(Exception):
    """Raised when required Lyra configuration is missing or unreadable."""


class LyraCredentials(BaseModel):
    """Credentials and endpoints for one shop mode."""

    model_config = ConfigDict(frozen=True)

    mode: LyraMode
    username: str
    password: str
    public_key: str
    hmac_key: str | None = None
    endpoint: str = DEFAULT_ENDPOINT
    script_base_url: str = DEFAULT_SCRIPT_BASE_URL

    def __repr__(self) -> str:
        return f"LyraCredentials(mode={self.mode.value}, username={self.username})"


def parse_modes(value: str) -> list[LyraMode]:
    """Parse a comma-separated list of shop modes, ignoring blanks and duplicates.

    Raises:
        LyraConfigError: If a mode is not recognised.
    """
    modes: list[LyraMode] = []
    for part in value.split(","):
        name = part.strip().lower()
        if not name:
            continue
        try:
            mode = LyraMode(name)
        except ValueError as e:
            raise LyraConfigError(f"Unknown Lyra mode: {name}") from e
        if mode not in modes:
            modes.append(mode)
    return modes


def env_flag(name: str, default: bool = False) -> bool:
    """Read a boolean environment variable."""
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUTHY


class LyraConfigService:
    """Resolves Lyra settings and secrets.

    Usage:
        config = get_lyra_config_service()
        credentials = config.get_credentials()
        keys = config.signing_keys(HashKeyType.PASSWORD)
    """

    def __init__(
        self,
        environment: str | None = None,
        *,
        active_mode: LyraMode | None = None,
        modes: list[LyraMode] | None = None,
        parameter_prefix: str | None = None,
        signature_compat: bool | None = None,
    ) -> None:
        """Initialize from arguments, falling back to environment variables.

        Args:
            environment: Environment name (dev, prod). Defaults to ENVIRONMENT env var.
            active_mode: Mode used for new payments. Defaults to LYRA_MODE.
            modes: Modes whose keys verify signatures. Defaults to LYRA_MODES.
            parameter_prefix: SSM path prefix. Defaults to LYRA_PARAMETER_PREFIX.
            signature_compat: Enable compatibility verification. Defaults to
                LYRA_SIGNATURE_COMPAT.
        """
        self.environment = environment or os.environ.get("ENVIRONMENT", "dev")
        self.active_mode = active_mode or LyraMode(
            os.environ.get("LYRA_MODE", LyraMode.TEST.value).strip().lower()
        )
        self.modes = modes or parse_modes(os.environ.get("LYRA_MODES", "test,production"))
        if self.active_mode in self.modes:
            # Active mode keys are tried first
            self.modes = [self.active_mode] + [m for m in self.modes if m != self.active_mode]
        self._prefix = (
            parameter_prefix or os.environ.get("LYRA_PARAMETER_PREFIX", "/payments")
        ).rstrip("/")
        self.signature_compat = (
            signature_compat
            if signature_compat is not None
            else env_flag("LYRA_SIGNATURE_COMPAT")
        )
        self._ssm: SSMService | None = None

    def _get_ssm(self) -> SSMService:
        if self._ssm is None:
            self._ssm = get_ssm_service()
        return self._ssm

    def parameter_name(self, mode: LyraMode, name: str) -> str:
        """Full SSM path of a Lyra parameter."""
        return f"{self._prefix}/{self.environment}/lyra/{mode.value}/{name}"

    def _get(self, mode: LyraMode, name: str, *, required: bool = True) -> str | None:
        parameter = self.parameter_name(mode, name)
        try:
            value = self._get_ssm().get_parameter(parameter)
        except SSMServiceError as e:
            if e.not_found and not required:
                return None
            raise LyraConfigError(str(e)) from e
        value = value.strip()
        if not value:
            if required:
                raise LyraConfigError(f"Lyra parameter is empty: {parameter}")
            return None
        return value

    def get_credentials(self, mode: LyraMode | None = None) -> LyraCredentials:
        """Load the full credential set for a shop mode.

        Args:
            mode: Shop mode. Defaults to the active mode.

        Returns:
            LyraCredentials for the mode.

        Raises:
            LyraConfigError: If a required parameter is missing.
        """
        mode = mode or self.active_mode
        endpoint = self._get(mode, "endpoint", required=False) or DEFAULT_ENDPOINT
        if not endpoint.endswith("/"):
            endpoint = f"{endpoint}/"

        credentials = LyraCredentials(
            mode=mode,
            username=self._get(mode, "username"),
            password=self._get(mode, "password"),
            public_key=self._get(mode, "public_key"),
            hmac_key=self._get(mode, "hmac_key", required=False),
            endpoint=endpoint,
            script_base_url=self._get(mode, "script_base_url", required=False)
            or DEFAULT_SCRIPT_BASE_URL,
        )
        logger.info("Lyra credentials loaded for mode: %s", mode.value)
        return credentials

    def signing_keys(self, key_type: HashKeyType) -> list[SigningKey]:
        """Collect the signing secrets of every configured mode.

        Modes without the parameter are skipped; at least one must exist.

        Args:
            key_type: Which secret signed the callback (kr-hash-key)

        Returns:
            Signing keys, active mode first.

        Raises:
            LyraConfigError: If no mode has the secret configured.
        """
        parameter = KEY_TYPE_PARAMETERS[key_type]
        keys: list[SigningKey] = []
        for mode in self.modes:
            secret = self._get(mode, parameter, required=False)
            if secret is None:
                logger.debug("No Lyra %s configured for mode %s", parameter, mode.value)
                continue
            keys.append(SigningKey(mode=mode, key_type=key_type, secret=secret))

        if not keys:
            raise LyraConfigError(
                f"No Lyra {parameter} configured for modes: "
                + ", ".join(m.value for m in self.modes)
            )
        return keys


@lru_cache(maxsize=1)
def get_lyra_config_service() -> LyraConfigService:
    """Get the shared LyraConfigService instance (singleton pattern)."""
    return LyraConfigService()
