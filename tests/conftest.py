from unittest.mock import MagicMock

import pytest

from nrlayers.manifest import Manifest

LAYER_ARN = "arn:aws:lambda:us-east-1:451483290750:layer:NewRelicNodeJS12X:14"
INGESTION_ARN = "arn:aws:lambda:us-east-1:123456789012:function:newrelic-log-ingestion"


@pytest.fixture
def manifest_data():
    return {
        "service": "orders",
        "provider": {"name": "aws", "region": "us-east-1", "runtime": "nodejs12.x"},
        "plugins": ["serverless-newrelic-layers"],
        "custom": {"newRelic": {"accountId": "2421051"}},
        "functions": {
            "create": {"handler": "handler.create"},
            "report": {
                "handler": "report.handler",
                "runtime": "python3.7",
                "name": "orders-report",
            },
        },
    }


@pytest.fixture
def manifest(manifest_data):
    return Manifest.from_dict(manifest_data)


@pytest.fixture
def lambda_client():
    client = MagicMock()

    def get_function(FunctionName):  # noqa: N803
        return {
            "Configuration": {
                "FunctionName": FunctionName,
                "FunctionArn": INGESTION_ARN.replace("newrelic-log-ingestion", FunctionName),
            }
        }

    client.get_function.side_effect = get_function
    return client


@pytest.fixture
def logs_client():
    client = MagicMock()
    client.describe_subscription_filters.return_value = {"subscriptionFilters": []}
    return client
