import threading
import time
from unittest.mock import MagicMock

import pytest
import requests

from nrlayers.exceptions import LookupFailure
from nrlayers.layer_arn import LayerArnResolver, fetch_layer_arn

from conftest import LAYER_ARN


def _response(body=None, status=200, json_error=None):
    response = MagicMock()
    response.status_code = status
    if status >= 400:  # noqa: PLR2004
        response.raise_for_status.side_effect = requests.HTTPError(f"{status} Error")
    if json_error:
        response.json.side_effect = json_error
    else:
        response.json.return_value = body
    return response


@pytest.fixture
def mock_get(monkeypatch):
    get = MagicMock()
    monkeypatch.setattr("nrlayers.layer_arn.requests.get", get)
    return get


def test_fetch_layer_arn(mock_get):
    mock_get.return_value = _response(
        {"Layers": [{"LatestMatchingVersion": {"LayerVersionArn": LAYER_ARN}}]}
    )

    assert fetch_layer_arn("nodejs12.x", "us-east-1") == LAYER_ARN

    mock_get.assert_called_once_with(
        "https://us-east-1.nr-layers.iopipe.com/get-layers",
        params={"CompatibleRuntime": "nodejs12.x"},
        timeout=10,
    )


@pytest.mark.parametrize(
    "body",
    [
        {},
        {"Layers": []},
        {"Layers": [{}]},
        {"Layers": [{"LatestMatchingVersion": {}}]},
        {"Layers": [{"LatestMatchingVersion": {"LayerVersionArn": ""}}]},
        [],
        None,
    ],
)
def test_fetch_layer_arn_missing_path(mock_get, body):
    mock_get.return_value = _response(body)

    with pytest.raises(LookupFailure, match="No New Relic layer found for nodejs12.x"):
        fetch_layer_arn("nodejs12.x", "us-east-1")


def test_fetch_layer_arn_http_error(mock_get):
    mock_get.return_value = _response(status=500)

    with pytest.raises(LookupFailure, match="500 Error"):
        fetch_layer_arn("python3.7", "eu-west-1")


def test_fetch_layer_arn_connection_error(mock_get):
    mock_get.side_effect = requests.ConnectionError("no route to host")

    with pytest.raises(LookupFailure, match="no route to host"):
        fetch_layer_arn("python3.7", "eu-west-1")


def test_fetch_layer_arn_invalid_json(mock_get):
    mock_get.return_value = _response(json_error=ValueError("Expecting value"))

    with pytest.raises(LookupFailure, match="invalid JSON"):
        fetch_layer_arn("python3.7", "eu-west-1")


def test_resolver_override_skips_fetch():
    fetch = MagicMock()
    resolver = LayerArnResolver(override="arn:override", fetch=fetch)

    assert resolver.resolve("nodejs12.x", "us-east-1") == "arn:override"
    fetch.assert_not_called()


def test_resolver_memoizes_per_runtime_and_region():
    fetch = MagicMock(side_effect=lambda runtime, region: f"arn:{runtime}:{region}")
    resolver = LayerArnResolver(fetch=fetch)

    assert resolver.resolve("nodejs12.x", "us-east-1") == "arn:nodejs12.x:us-east-1"
    assert resolver.resolve("nodejs12.x", "us-east-1") == "arn:nodejs12.x:us-east-1"
    assert resolver.resolve("python3.7", "us-east-1") == "arn:python3.7:us-east-1"
    assert resolver.resolve("nodejs12.x", "eu-west-1") == "arn:nodejs12.x:eu-west-1"

    assert fetch.call_count == 3  # noqa: PLR2004


def test_resolver_does_not_cache_failures():
    fetch = MagicMock(side_effect=[LookupFailure("down"), LAYER_ARN])
    resolver = LayerArnResolver(fetch=fetch)

    with pytest.raises(LookupFailure):
        resolver.resolve("nodejs12.x", "us-east-1")

    assert resolver.resolve("nodejs12.x", "us-east-1") == LAYER_ARN
    assert fetch.call_count == 2  # noqa: PLR2004


def test_resolver_single_flight():
    calls = []
    release = threading.Event()

    def slow_fetch(runtime, region):
        calls.append((runtime, region))
        release.wait(timeout=5)
        return LAYER_ARN

    resolver = LayerArnResolver(fetch=slow_fetch)
    results = []

    def call():
        results.append(resolver.resolve("nodejs12.x", "us-east-1"))

    threads = [threading.Thread(target=call) for _ in range(5)]
    for thread in threads:
        thread.start()
    # Give every thread a chance to reach the resolver before the fetch returns
    time.sleep(0.1)
    release.set()
    for thread in threads:
        thread.join(timeout=5)

    assert calls == [("nodejs12.x", "us-east-1")]
    assert results == [LAYER_ARN] * 5


def test_resolver_waiters_see_owner_failure():
    started = threading.Event()
    release = threading.Event()

    def failing_fetch(runtime, region):
        started.set()
        release.wait(timeout=5)
        raise LookupFailure("down")

    resolver = LayerArnResolver(fetch=failing_fetch)
    errors = []

    def call():
        try:
            resolver.resolve("nodejs12.x", "us-east-1")
        except LookupFailure as e:
            errors.append(e)

    owner = threading.Thread(target=call)
    owner.start()
    started.wait(timeout=5)
    waiter = threading.Thread(target=call)
    waiter.start()
    time.sleep(0.05)
    release.set()
    owner.join(timeout=5)
    waiter.join(timeout=5)

    assert len(errors) == 2  # noqa: PLR2004
