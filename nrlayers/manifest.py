import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Final

import yaml

from nrlayers.config import AwsConfig, NewRelicConfig
from nrlayers.constants import DEFAULT_STAGE
from nrlayers.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

_FUNCTION_FIELDS: Final = ("handler", "name", "runtime", "environment", "layers", "package")


@dataclass(frozen=True)
class CloudFormationTag:
    """A short-form intrinsic such as ``!GetAtt Queue.Arn``, kept verbatim."""

    tag: str
    value: Any


class ManifestLoader(yaml.SafeLoader):
    pass


class ManifestDumper(yaml.SafeDumper):
    pass


def _construct_tag(loader: ManifestLoader, suffix: str, node: yaml.Node) -> CloudFormationTag:
    if isinstance(node, yaml.ScalarNode):
        value = loader.construct_scalar(node)
    elif isinstance(node, yaml.SequenceNode):
        value = loader.construct_sequence(node, deep=True)
    else:
        value = loader.construct_mapping(node, deep=True)
    return CloudFormationTag(f"!{suffix}", value)


def _represent_tag(dumper: ManifestDumper, data: CloudFormationTag) -> yaml.Node:
    if isinstance(data.value, list):
        return dumper.represent_sequence(data.tag, data.value)
    if isinstance(data.value, dict):
        return dumper.represent_mapping(data.tag, data.value)
    return dumper.represent_scalar(data.tag, data.value)


ManifestLoader.add_multi_constructor("!", _construct_tag)
ManifestDumper.add_representer(CloudFormationTag, _represent_tag)


@dataclass(kw_only=True)
class FunctionDefinition:
    """One entry of the manifest's ``functions`` block.

    Mutable: the planner edits environment, layers, handler and package in place.
    Keys the planner does not care about are kept in ``extra`` and written back as-is.
    """

    key: str
    handler: str | None = None
    name: str | None = None
    runtime: str | None = None
    environment: dict[str, Any] = field(default_factory=dict)
    layers: list[Any] = field(default_factory=list)
    package: dict[str, Any] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def excludes(self) -> list[str]:
        """The package.exclude list, created on first access."""
        exclude = self.package.setdefault("exclude", [])
        if not isinstance(exclude, list):
            raise ConfigurationError(f"Function '{self.key}': package.exclude must be a list")
        return exclude

    @classmethod
    def from_dict(cls, key: str, raw: dict[str, Any] | None) -> "FunctionDefinition":
        raw = raw or {}
        if not isinstance(raw, dict):
            raise ConfigurationError(f"Function '{key}' must be a mapping")

        environment = raw.get("environment") or {}
        layers = raw.get("layers") or []
        package = raw.get("package") or {}
        if not isinstance(environment, dict):
            raise ConfigurationError(f"Function '{key}': environment must be a mapping")
        if not isinstance(layers, list):
            raise ConfigurationError(f"Function '{key}': layers must be a list")
        if not isinstance(package, dict):
            raise ConfigurationError(f"Function '{key}': package must be a mapping")

        return cls(
            key=key,
            handler=raw.get("handler"),
            name=raw.get("name"),
            runtime=raw.get("runtime"),
            environment=dict(environment),
            layers=list(layers),
            package=dict(package),
            extra={k: v for k, v in raw.items() if k not in _FUNCTION_FIELDS},
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        for name in _FUNCTION_FIELDS:
            value = getattr(self, name)
            if value:
                data[name] = value
        data.update(self.extra)
        return data


@dataclass(frozen=True, kw_only=True)
class ProviderSettings:
    region: str | None = None
    stage: str = DEFAULT_STAGE
    runtime: str | None = None
    profile: str | None = None


@dataclass(kw_only=True)
class Manifest:
    """In-memory view of serverless.yml."""

    service: str
    provider: ProviderSettings = field(default_factory=ProviderSettings)
    plugins: list[str] = field(default_factory=list)
    functions: dict[str, FunctionDefinition] = field(default_factory=dict)
    newrelic: NewRelicConfig = field(default_factory=NewRelicConfig)
    raw: dict[str, Any] = field(default_factory=dict)
    path: Path | None = None

    @property
    def region(self) -> str | None:
        return self.provider.region

    @property
    def aws(self) -> AwsConfig:
        return AwsConfig(profile=self.provider.profile, region=self.provider.region)

    def runtime_for(self, function: FunctionDefinition) -> str | None:
        return function.runtime or self.provider.runtime

    def deployed_name(self, function: FunctionDefinition) -> str:
        """Name of the deployed Lambda function.

        Declared name wins, otherwise the framework default "{service}-{stage}-{key}".
        """
        if function.name:
            return function.name
        return f"{self.service}-{self.provider.stage}-{function.key}"

    def with_overrides(
        self, *, region: str | None = None, stage: str | None = None, profile: str | None = None
    ) -> "Manifest":
        """Apply command line overrides to the provider settings. Mutates and returns self."""
        changes = {
            name: value
            for name, value in (("region", region), ("stage", stage), ("profile", profile))
            if value is not None
        }
        if changes:
            self.provider = replace(self.provider, **changes)
        return self

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: Path | None = None) -> "Manifest":
        if not isinstance(data, dict):
            raise ConfigurationError("Manifest must be a mapping")

        service = data.get("service")
        if isinstance(service, dict):
            service = service.get("name")
        if not isinstance(service, str) or not service:
            raise ConfigurationError("Manifest must declare a 'service' name")

        provider_raw = data.get("provider") or {}
        if not isinstance(provider_raw, dict):
            raise ConfigurationError("'provider' must be a mapping")
        provider = ProviderSettings(
            region=provider_raw.get("region"),
            stage=provider_raw.get("stage") or DEFAULT_STAGE,
            runtime=provider_raw.get("runtime"),
            profile=provider_raw.get("profile"),
        )

        functions_raw = data.get("functions") or {}
        if not isinstance(functions_raw, dict):
            raise ConfigurationError("'functions' must be a mapping")
        functions = {
            key: FunctionDefinition.from_dict(key, raw) for key, raw in functions_raw.items()
        }

        custom = data.get("custom") or {}
        if not isinstance(custom, dict):
            raise ConfigurationError("'custom' must be a mapping")

        return cls(
            service=service,
            provider=provider,
            plugins=_plugin_names(data.get("plugins")),
            functions=functions,
            newrelic=NewRelicConfig.from_manifest(custom.get("newRelic")),
            raw=data,
            path=path,
        )

    @classmethod
    def load(cls, path: Path) -> "Manifest":
        logger.debug("Loading manifest %s", path)
        with path.open(encoding="utf-8") as f:
            try:
                data = yaml.load(f, Loader=ManifestLoader) or {}  # noqa: S506
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Could not parse {path}: {e}") from e
        return cls.from_dict(data, path=path)

    def to_dict(self) -> dict[str, Any]:
        """The original manifest with the (possibly mutated) functions written back."""
        data = dict(self.raw)
        data["functions"] = {key: fn.to_dict() for key, fn in self.functions.items()}
        return data

    def dump(self) -> str:
        return yaml.dump(
            self.to_dict(), Dumper=ManifestDumper, sort_keys=False, default_flow_style=False
        )

    def save(self, path: Path | None = None) -> Path:
        target = path or self.path
        if target is None:
            raise ValueError("No path given and manifest was not loaded from a file")
        target.write_text(self.dump(), encoding="utf-8")
        logger.info("Wrote manifest to %s", target)
        return target


def _plugin_names(plugins: Any) -> list[str]:
    # Plugins are either a plain list or {"localPath": ..., "modules": [...]}
    if plugins is None:
        return []
    if isinstance(plugins, dict):
        plugins = plugins.get("modules") or []
    if not isinstance(plugins, list):
        raise ConfigurationError("'plugins' must be a list or a mapping with 'modules'")
    return [str(plugin) for plugin in plugins]
