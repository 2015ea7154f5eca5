import logging
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Literal, final

import boto3
from semver import VersionInfo

from nrlayers.constants import BUNDLER_PLUGIN_NAME, MIN_FRAMEWORK_VERSION, PLUGIN_NAME
from nrlayers.exceptions import LookupFailure
from nrlayers.layer_arn import LayerArnResolver
from nrlayers.log_filters import LogFilterReconciler, ReconcileResult
from nrlayers.manifest import FunctionDefinition, Manifest
from nrlayers.planner import Skip, plan

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 8

type OutcomeStatus = Literal["instrumented", "unchanged", "skipped", "configured", "failed"]


@final
@dataclass(frozen=True)
class FunctionOutcome:
    function: str
    status: OutcomeStatus
    detail: str | None = None


@dataclass
class RunReport:
    """What happened to each function during one hook."""

    hook: str
    outcomes: list[FunctionOutcome] = field(default_factory=list)
    skipped_reason: str | None = None

    @property
    def failures(self) -> list[FunctionOutcome]:
        return [o for o in self.outcomes if o.status == "failed"]

    @property
    def ok(self) -> bool:
        return not self.failures

    def count(self, status: OutcomeStatus) -> int:
        return sum(1 for o in self.outcomes if o.status == status)


class NewRelicLayerPlugin:
    """Instruments every function in a manifest and manages their log subscription filters.

    Hook names follow the deployment framework lifecycle so a driver can dispatch
    on them directly (see ``hooks``).

    Args:
        manifest: Loaded manifest. Function definitions are mutated in place on package.
        framework_version: Version of the deployment framework, checked against the
            minimum version with layer support. Not checked when None.
        session: boto3 session for the log filter hooks. Built from the manifest's
            provider profile and region when None.
        layer_resolver: Shared layer ARN resolver. Built from the config override when None.
        reconciler: Log filter reconciler. Built from the session when None.
        max_workers: Number of functions processed in parallel.
    """

    def __init__(
        self,
        manifest: Manifest,
        *,
        framework_version: str | None = None,
        session: boto3.Session | None = None,
        layer_resolver: LayerArnResolver | None = None,
        reconciler: LogFilterReconciler | None = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ) -> None:
        self.manifest = manifest
        self.config = manifest.newrelic
        self.framework_version = framework_version
        self._session = session
        self._layer_resolver = layer_resolver or LayerArnResolver(override=self.config.layer_arn)
        self._reconciler = reconciler
        self._max_workers = max_workers
        self.hooks: dict[str, Callable[[], RunReport | None]] = {
            "after:deploy:deploy": self.add_log_stream_filters,
            "after:deploy:function:packageFunction": self.cleanup,
            "after:package:createDeploymentArtifacts": self.cleanup,
            "before:deploy:function:packageFunction": self.run,
            "before:package:createDeploymentArtifacts": self.run,
            "before:remove:remove": self.remove_log_stream_filters,
        }

    def invoke(self, hook: str) -> RunReport | None:
        if hook not in self.hooks:
            raise ValueError(f"Unknown hook: {hook}")
        logger.debug("Invoking hook %s", hook)
        return self.hooks[hook]()

    @property
    def reconciler(self) -> LogFilterReconciler:
        if self._reconciler is None:
            session = self._session or boto3.Session(
                profile_name=self.manifest.aws.profile, region_name=self.manifest.aws.region
            )
            self._reconciler = LogFilterReconciler(
                session.client("lambda"), session.client("logs")
            )
        return self._reconciler

    def run(self) -> RunReport:
        """Add the New Relic layer, wrapper handler and environment to every function."""
        report = RunReport("package")

        unsupported = self._unsupported_framework_reason()
        if unsupported:
            logger.warning(unsupported)
            report.skipped_reason = unsupported
            return report

        self.check_plugin_order()
        report.outcomes = self._fan_out(self.manifest.functions.values(), self._instrument)
        return report

    def cleanup(self) -> None:
        """Nothing is written outside the manifest, so there is nothing to clean up."""

    def add_log_stream_filters(self) -> RunReport:
        report = RunReport("deploy")
        reconciler = self.reconciler
        functions = []
        for function in self.manifest.functions.values():
            if self.config.is_excluded(function.key):
                report.outcomes.append(
                    FunctionOutcome(function.key, "skipped", f"Excluded function {function.key}")
                )
            else:
                functions.append(function)
        report.outcomes.extend(
            self._fan_out(functions, lambda fn: self._ensure_log_filter(reconciler, fn))
        )
        return report

    def remove_log_stream_filters(self) -> RunReport:
        report = RunReport("remove")
        reconciler = self.reconciler
        report.outcomes = self._fan_out(
            self.manifest.functions.values(),
            lambda fn: self._remove_log_filter(reconciler, fn),
        )
        return report

    def check_plugin_order(self) -> bool:
        """Warn when the bundler runs after this plugin. Returns True if the order is fine."""
        plugins = self.manifest.plugins
        logger.debug("Plugins: %s", plugins)
        if BUNDLER_PLUGIN_NAME not in plugins or PLUGIN_NAME not in plugins:
            return True
        if plugins.index(BUNDLER_PLUGIN_NAME) > plugins.index(PLUGIN_NAME):
            logger.warning(
                "%s plugin must come after %s in serverless.yml; "
                "the wrapper handler may be missing from the bundle.",
                PLUGIN_NAME,
                BUNDLER_PLUGIN_NAME,
            )
            return False
        return True

    def _unsupported_framework_reason(self) -> str | None:
        if self.framework_version is None:
            return None
        try:
            version = VersionInfo.parse(self.framework_version)
        except ValueError:
            logger.warning(
                "Could not parse framework version '%s'; assuming layers are supported",
                self.framework_version,
            )
            return None
        if version < VersionInfo.parse(MIN_FRAMEWORK_VERSION):
            return (
                f"Serverless {self.framework_version} does not support layers. "
                f"Please upgrade to >={MIN_FRAMEWORK_VERSION}."
            )
        return None

    def _fan_out(
        self,
        functions: Iterable[FunctionDefinition],
        work: Callable[[FunctionDefinition], FunctionOutcome],
    ) -> list[FunctionOutcome]:
        functions = list(functions)
        if not functions:
            return []
        with ThreadPoolExecutor(max_workers=self._max_workers) as executor:
            futures = [(fn, executor.submit(work, fn)) for fn in functions]
            outcomes = []
            for function, future in futures:
                try:
                    outcomes.append(future.result())
                except Exception as e:
                    logger.exception("Unexpected error while processing %s", function.key)
                    outcomes.append(FunctionOutcome(function.key, "failed", str(e)))
        return outcomes

    def _instrument(self, function: FunctionDefinition) -> FunctionOutcome:
        logger.info("Adding New Relic layer to %s", function.key)
        try:
            result = plan(
                function,
                self.config,
                self.manifest.region,
                self._layer_resolver.resolve,
                runtime=self.manifest.runtime_for(function),
            )
        except LookupFailure as e:
            logger.warning("Could not add New Relic layer to %s: %s", function.key, e)
            return FunctionOutcome(function.key, "failed", str(e))

        if isinstance(result, Skip):
            logger.info("%s; skipping.", result.reason)
            return FunctionOutcome(function.key, "skipped", result.reason)
        status = "instrumented" if result.layer_added else "unchanged"
        return FunctionOutcome(function.key, status, result.layer_arn)

    def _ensure_log_filter(
        self, reconciler: LogFilterReconciler, function: FunctionDefinition
    ) -> FunctionOutcome:
        name = self.manifest.deployed_name(function)
        logger.info("Configuring New Relic log stream filter for %s", name)
        return _outcome(function, reconciler.ensure(name))

    def _remove_log_filter(
        self, reconciler: LogFilterReconciler, function: FunctionDefinition
    ) -> FunctionOutcome:
        name = self.manifest.deployed_name(function)
        logger.info("Removing New Relic log stream filter for %s", name)
        return _outcome(function, reconciler.remove(name))


def _outcome(function: FunctionDefinition, result: ReconcileResult) -> FunctionOutcome:
    if not result.ok:
        return FunctionOutcome(function.key, "failed", result.error)
    if not result.actions:
        return FunctionOutcome(function.key, "unchanged")
    return FunctionOutcome(function.key, "configured", ", ".join(result.actions))
