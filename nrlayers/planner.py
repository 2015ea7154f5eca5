import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import final

from nrlayers.config import NewRelicConfig
from nrlayers.constants import (
    ENV_ACCOUNT_ID,
    ENV_APP_NAME,
    ENV_LAMBDA_HANDLER,
    ENV_LOG,
    ENV_LOG_LEVEL,
    ENV_NO_CONFIG_FILE,
    ENV_SERVERLESS_MODE_ENABLED,
    ENV_TRUSTED_ACCOUNT_KEY,
)
from nrlayers.manifest import FunctionDefinition
from nrlayers.runtimes import WRAPPER_HANDLERS, Runtime, parse_runtime, policy_for

logger = logging.getLogger(__name__)

type LayerArnLookup = Callable[[str, str], str]


@final
@dataclass(frozen=True)
class Skip:
    """The function was left untouched."""

    reason: str


@final
@dataclass(frozen=True)
class Planned:
    definition: FunctionDefinition
    layer_arn: str
    layer_added: bool


type PlanResult = Planned | Skip


def check_eligibility(
    definition: FunctionDefinition,
    config: NewRelicConfig,
    region: str | None,
    runtime: str | None = None,
) -> Skip | Runtime:
    """Run the skip checks in order. Returns the parsed runtime when the function qualifies."""
    if not region:
        return Skip("No AWS region specified for New Relic layer")

    if not config.account_id and not definition.environment.get(ENV_ACCOUNT_ID):
        return Skip(f'No New Relic Account ID specified for "{definition.key}"')

    runtime = runtime if runtime is not None else definition.runtime
    parsed = parse_runtime(runtime)
    if parsed is None:
        return Skip(f'Unsupported runtime "{runtime}" for New Relic layer')

    if config.is_excluded(definition.key):
        return Skip(f"Excluded function {definition.key}")

    return parsed


def plan(
    definition: FunctionDefinition,
    config: NewRelicConfig,
    region: str | None,
    resolve_layer_arn: LayerArnLookup,
    *,
    runtime: str | None = None,
) -> PlanResult:
    """Instrument a function definition in place.

    Args:
        definition: Function to mutate.
        config: custom.newRelic settings.
        region: Deployment region; functions are skipped without one.
        resolve_layer_arn: Called with (runtime, region) once every skip check passed.
            Not called when config.layer_arn is set.
        runtime: Effective runtime when the definition inherits it from the provider.

    Raises:
        LookupFailure: If the layer ARN cannot be resolved. Nothing is mutated.
        ConfigurationError: If package.exclude is not a list. Nothing is mutated.
    """
    eligibility = check_eligibility(definition, config, region, runtime)
    if isinstance(eligibility, Skip):
        logger.debug("Skipping %s: %s", definition.key, eligibility.reason)
        return eligibility

    parsed_runtime = eligibility
    layer_arn = config.layer_arn or resolve_layer_arn(parsed_runtime.value, region)
    policy = policy_for(parsed_runtime)
    excludes = definition.excludes if policy.package_includes else None

    layer_added = attach_layer(definition.layers, layer_arn, prepend=config.prepend)
    if not layer_added:
        logger.info('Function "%s" already specifies a New Relic layer', definition.key)

    apply_environment(definition, config)
    definition.handler = policy.wrapper_handler
    if excludes is not None:
        excludes.extend(p for p in policy.package_includes if p not in excludes)

    return Planned(definition=definition, layer_arn=layer_arn, layer_added=layer_added)


def attach_layer(layers: list, layer_arn: str, *, prepend: bool = False) -> bool:
    """Add layer_arn to layers unless a string entry already contains it.

    Returns True if the layer was added.
    """
    if any(isinstance(layer, str) and layer_arn in layer for layer in layers):
        return False
    if prepend:
        layers.insert(0, layer_arn)
    else:
        layers.append(layer_arn)
    return True


def apply_environment(definition: FunctionDefinition, config: NewRelicConfig) -> None:
    env = definition.environment

    # A definition planned before already points at the wrapper; keep the recorded original
    if definition.handler not in WRAPPER_HANDLERS:
        env[ENV_LAMBDA_HANDLER] = definition.handler
    elif not env.get(ENV_LAMBDA_HANDLER):
        logger.warning(
            'Function "%s" already uses the wrapper handler but sets no %s; '
            "the wrapper has no handler to call",
            definition.key,
            ENV_LAMBDA_HANDLER,
        )

    _set_default(env, ENV_LOG, "stdout")
    _set_default(env, ENV_LOG_LEVEL, "debug" if config.debug else "info")
    _set_default(env, ENV_NO_CONFIG_FILE, "true")
    _set_default(env, ENV_APP_NAME, definition.name or definition.key)
    _set_default(env, ENV_ACCOUNT_ID, config.account_id)
    _set_default(
        env, ENV_TRUSTED_ACCOUNT_KEY, env.get(ENV_ACCOUNT_ID) or config.trusted_account_key
    )
    _set_default(
        env, ENV_SERVERLESS_MODE_ENABLED, "true" if config.serverless_mode_enabled else "false"
    )


def _set_default(env: dict, key: str, value: str | None) -> None:
    if env.get(key) or value is None:
        return
    env[key] = value
