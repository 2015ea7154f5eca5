from dataclasses import dataclass
from enum import StrEnum
from typing import Final, final

from nrlayers.constants import NODE_WRAPPER_HANDLER, NODE_WRAPPER_INCLUDE, PYTHON_WRAPPER_HANDLER


class RuntimeFamily(StrEnum):
    NODE = "node"
    PYTHON = "python"


class Runtime(StrEnum):
    """Lambda runtimes the New Relic layer supports."""

    NODEJS_12 = "nodejs12.x"
    NODEJS_10 = "nodejs10.x"
    NODEJS_8 = "nodejs8.10"
    PYTHON_27 = "python2.7"
    PYTHON_36 = "python3.6"
    PYTHON_37 = "python3.7"


@final
@dataclass(frozen=True)
class RuntimePolicy:
    family: RuntimeFamily
    wrapper_handler: str
    # Patterns appended to package.exclude so the wrapper survives packaging
    package_includes: tuple[str, ...] = ()


_NODE_POLICY: Final = RuntimePolicy(
    family=RuntimeFamily.NODE,
    wrapper_handler=NODE_WRAPPER_HANDLER,
    package_includes=(NODE_WRAPPER_INCLUDE,),
)
_PYTHON_POLICY: Final = RuntimePolicy(
    family=RuntimeFamily.PYTHON,
    wrapper_handler=PYTHON_WRAPPER_HANDLER,
)

RUNTIME_POLICIES: Final[dict[Runtime, RuntimePolicy]] = {
    Runtime.NODEJS_12: _NODE_POLICY,
    Runtime.NODEJS_10: _NODE_POLICY,
    Runtime.NODEJS_8: _NODE_POLICY,
    Runtime.PYTHON_27: _PYTHON_POLICY,
    Runtime.PYTHON_36: _PYTHON_POLICY,
    Runtime.PYTHON_37: _PYTHON_POLICY,
}

WRAPPER_HANDLERS: Final = frozenset(policy.wrapper_handler for policy in RUNTIME_POLICIES.values())


def parse_runtime(value: object) -> Runtime | None:
    """Return the matching Runtime, or None for anything unsupported (including non-strings)."""
    if not isinstance(value, str):
        return None
    try:
        return Runtime(value)
    except ValueError:
        return None


def policy_for(runtime: Runtime) -> RuntimePolicy:
    return RUNTIME_POLICIES[runtime]


def wrapper_handler(runtime: str, handler: str) -> str:
    """Returns the wrapper entry point for the runtime, or the handler itself if unsupported.

    For "nodejs12.x" → "newrelic-lambda-wrapper.handler"
    For "python3.7" → "newrelic_lambda_wrapper.handler"
    For "go1.x" → handler unchanged
    """
    parsed = parse_runtime(runtime)
    if parsed is None:
        return handler
    return policy_for(parsed).wrapper_handler
