import logging
from dataclasses import dataclass, field, fields
from typing import Any, Final, TypedDict

from nrlayers.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# custom.newRelic keys as they appear in serverless.yml
_MANIFEST_KEYS: Final[dict[str, str]] = {
    "accountId": "account_id",
    "trustedAccountKey": "trusted_account_key",
    "layerArn": "layer_arn",
    "exclude": "exclude",
    "prepend": "prepend",
    "debug": "debug",
    "serverlessModeEnabled": "serverless_mode_enabled",
}


@dataclass(frozen=True, kw_only=True)
class AwsConfig:
    """AWS configuration used to build the boto3 session.

    Both profile and region are optional. When not specified, boto3 follows the
    standard credential and region resolution chain (environment variables,
    shared config files, instance roles).
    """

    profile: str | None = None
    region: str | None = None


class NewRelicManifestDict(TypedDict, total=False):
    """The ``custom.newRelic`` block as written in serverless.yml."""

    accountId: str | None  # noqa: N815
    trustedAccountKey: str | None  # noqa: N815
    layerArn: str | None  # noqa: N815
    exclude: list[str]
    prepend: bool
    debug: bool
    serverlessModeEnabled: bool  # noqa: N815


@dataclass(frozen=True, kw_only=True)
class NewRelicConfig:
    """Settings from the manifest's ``custom.newRelic`` block.

    Attributes:
        account_id: New Relic account id. Required unless every function already
            sets NEW_RELIC_ACCOUNT_ID in its environment.
        trusted_account_key: Fallback for NEW_RELIC_TRUSTED_ACCOUNT_KEY when no
            account id is available.
        layer_arn: Explicit layer ARN. When set the layer lookup service is never called.
        exclude: Function keys that are left uninstrumented.
        prepend: Insert the layer before existing layers instead of after them.
        debug: Default NEW_RELIC_LOG_LEVEL to "debug" instead of "info".
        serverless_mode_enabled: Default for NEW_RELIC_SERVERLESS_MODE_ENABLED.
    """

    account_id: str | None = None
    trusted_account_key: str | None = None
    layer_arn: str | None = None
    exclude: list[str] = field(default_factory=list)
    prepend: bool = False
    debug: bool = False
    serverless_mode_enabled: bool = True

    def __post_init__(self) -> None:
        for name in ("account_id", "trusted_account_key", "layer_arn"):
            value = getattr(self, name)
            if value is not None and not isinstance(value, str):
                raise ConfigurationError(
                    f"'{name}' must be a string. Got type: {type(value).__name__}."
                )
            if isinstance(value, str) and not value.strip():
                raise ConfigurationError(f"'{name}' cannot be empty.")

        if not isinstance(self.exclude, list):
            raise ConfigurationError(
                f"'exclude' must be a list of function names. "
                f"Got type: {type(self.exclude).__name__}."
            )
        if not all(isinstance(item, str) for item in self.exclude):
            raise ConfigurationError("If 'exclude' is a list, all its elements must be strings.")

        for name in ("prepend", "debug", "serverless_mode_enabled"):
            if not isinstance(getattr(self, name), bool):
                raise ConfigurationError(f"'{name}' must be a boolean")

    def is_excluded(self, function_key: str) -> bool:
        return function_key in self.exclude

    @classmethod
    def from_manifest(cls, raw: NewRelicManifestDict | None) -> "NewRelicConfig":
        """Build config from the raw ``custom.newRelic`` mapping (camelCase keys)."""
        if raw is None:
            return cls()
        if not isinstance(raw, dict):
            raise ConfigurationError(
                f"custom.newRelic must be a mapping. Got type: {type(raw).__name__}."
            )

        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        for key, value in raw.items():
            name = _MANIFEST_KEYS.get(key, key if key in known else None)
            if name is None:
                logger.warning("Ignoring unknown custom.newRelic option '%s'", key)
                continue
            if value is None:
                continue
            # YAML parses unquoted account ids as integers
            if (
                name in ("account_id", "trusted_account_key")
                and isinstance(value, int)
                and not isinstance(value, bool)
            ):
                value = str(value)  # noqa: PLW2901
            kwargs[name] = value

        return cls(**kwargs)
