"""Keeps exactly one New Relic subscription filter on each function's log group."""

import logging
from dataclasses import dataclass, field
from typing import Any, Literal, final

from botocore.client import BaseClient
from botocore.exceptions import BotoCoreError, ClientError

from nrlayers.constants import (
    LOG_FILTER_NAME,
    LOG_FILTER_PATTERN,
    LOG_GROUP_NAME,
    LOG_INGESTION_FUNCTION_NAME,
)
from nrlayers.exceptions import LookupFailure, ProviderCallError

logger = logging.getLogger(__name__)

type FilterAction = Literal["add", "remove"]


def log_group_name(function_name: str) -> str:
    return LOG_GROUP_NAME.format(function_name=function_name)


@final
@dataclass(frozen=True)
class SubscriptionFilter:
    filter_name: str
    filter_pattern: str
    log_group_name: str
    destination_arn: str | None = None

    @property
    def is_reserved(self) -> bool:
        return self.filter_name == LOG_FILTER_NAME

    @property
    def is_stale(self) -> bool:
        return self.is_reserved and self.filter_pattern != LOG_FILTER_PATTERN

    @classmethod
    def from_response(cls, item: dict[str, Any]) -> "SubscriptionFilter":
        return cls(
            filter_name=item.get("filterName", ""),
            filter_pattern=item.get("filterPattern", ""),
            log_group_name=item.get("logGroupName", ""),
            destination_arn=item.get("destinationArn"),
        )


@dataclass
class ReconcileResult:
    function_name: str
    actions: list[FilterAction] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _call(operation: str, method: Any, **kwargs: Any) -> dict[str, Any]:
    """Invoke a boto3 client method, logging and wrapping provider errors."""
    try:
        return method(**kwargs)
    except ClientError as e:
        error = e.response.get("Error", {})
        message = error.get("Message") or str(e)
        logger.warning("%s failed: %s", operation, message)
        raise ProviderCallError(operation, message, error.get("Code")) from e
    except BotoCoreError as e:
        logger.warning("%s failed: %s", operation, e)
        raise ProviderCallError(operation, str(e)) from e


class DestinationResolver:
    """Looks up the ARN of the log ingestion function."""

    def __init__(
        self, lambda_client: BaseClient, function_name: str = LOG_INGESTION_FUNCTION_NAME
    ) -> None:
        self._lambda = lambda_client
        self._function_name = function_name

    @property
    def function_name(self) -> str:
        return self._function_name

    def resolve(self) -> str:
        try:
            response = _call(
                "GetFunction", self._lambda.get_function, FunctionName=self._function_name
            )
        except ProviderCallError as e:
            raise LookupFailure(
                f"Could not find log ingestion function '{self._function_name}': {e.message}"
            ) from e

        arn = response.get("Configuration", {}).get("FunctionArn")
        if not arn:
            raise LookupFailure(f"Function '{self._function_name}' has no FunctionArn")
        return arn


class LogFilterReconciler:
    """Converges a function's log group to a single New Relic subscription filter.

    Each public method handles one function and never raises provider or lookup
    errors: they are logged and returned on the result so other functions proceed.
    """

    def __init__(
        self,
        lambda_client: BaseClient,
        logs_client: BaseClient,
        destination_resolver: DestinationResolver | None = None,
    ) -> None:
        self._lambda = lambda_client
        self._logs = logs_client
        self._destinations = destination_resolver or DestinationResolver(lambda_client)

    def ensure(self, function_name: str) -> ReconcileResult:
        result = ReconcileResult(function_name)
        try:
            _call("GetFunction", self._lambda.get_function, FunctionName=function_name)
            destination_arn = self._destinations.resolve()
            self._converge(function_name, destination_arn, result)
        except (ProviderCallError, LookupFailure) as e:
            logger.warning("Log filter for %s not configured: %s", function_name, e)
            result.error = str(e)
        return result

    def remove(self, function_name: str) -> ReconcileResult:
        result = ReconcileResult(function_name)
        try:
            self._delete(function_name, result)
        except ProviderCallError as e:
            if e.code == "ResourceNotFoundException":
                logger.debug("No New Relic log filter on %s", function_name)
            else:
                result.error = str(e)
        return result

    def describe(self, function_name: str) -> list[SubscriptionFilter]:
        response = _call(
            "DescribeSubscriptionFilters",
            self._logs.describe_subscription_filters,
            logGroupName=log_group_name(function_name),
        )
        return [
            SubscriptionFilter.from_response(item)
            for item in response.get("subscriptionFilters", [])
        ]

    def _converge(self, function_name: str, destination_arn: str, result: ReconcileResult) -> None:
        reserved = [f for f in self.describe(function_name) if f.is_reserved]

        if not reserved:
            self._put(function_name, destination_arn, result)
            return

        # No update-in-place primitive: delete, then recreate in the same slot
        for stale in (f for f in reserved if f.is_stale):
            logger.info(
                "Replacing stale log filter on %s (pattern %r)",
                function_name,
                stale.filter_pattern,
            )
            self._delete(function_name, result)
            self._put(function_name, destination_arn, result)

    def _put(self, function_name: str, destination_arn: str, result: ReconcileResult) -> None:
        _call(
            "PutSubscriptionFilter",
            self._logs.put_subscription_filter,
            logGroupName=log_group_name(function_name),
            filterName=LOG_FILTER_NAME,
            filterPattern=LOG_FILTER_PATTERN,
            destinationArn=destination_arn,
        )
        result.actions.append("add")
        logger.debug("Added log filter to %s", function_name)

    def _delete(self, function_name: str, result: ReconcileResult) -> None:
        _call(
            "DeleteSubscriptionFilter",
            self._logs.delete_subscription_filter,
            logGroupName=log_group_name(function_name),
            filterName=LOG_FILTER_NAME,
        )
        result.actions.append("remove")
        logger.debug("Removed log filter from %s", function_name)
