"""Resolution of the latest New Relic layer version ARN for a runtime and region."""

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future

import requests

from nrlayers.constants import LAYER_LOOKUP_TIMEOUT, LAYER_LOOKUP_URL
from nrlayers.exceptions import LookupFailure

logger = logging.getLogger(__name__)

type LayerArnFetcher = Callable[[str, str], str]


def fetch_layer_arn(runtime: str, region: str) -> str:
    """Ask the layer lookup service for the latest layer version compatible with runtime.

    Raises LookupFailure when the request fails or the response has no layer ARN.
    """
    url = LAYER_LOOKUP_URL.format(region=region)
    logger.debug("Looking up New Relic layer for %s in %s", runtime, region)
    try:
        response = requests.get(
            url, params={"CompatibleRuntime": runtime}, timeout=LAYER_LOOKUP_TIMEOUT
        )
        response.raise_for_status()
        body = response.json()
    except requests.RequestException as e:
        raise LookupFailure(f"Layer lookup for {runtime} in {region} failed: {e}") from e
    except ValueError as e:
        raise LookupFailure(
            f"Layer lookup for {runtime} in {region} returned invalid JSON: {e}"
        ) from e

    arn = _extract_layer_arn(body)
    if not arn:
        raise LookupFailure(f"No New Relic layer found for {runtime} in {region}")
    logger.debug("Resolved layer for %s in %s: %s", runtime, region, arn)
    return arn


def _extract_layer_arn(body: object) -> str | None:
    """Layers[0].LatestMatchingVersion.LayerVersionArn, or None if any step is missing."""
    if not isinstance(body, dict):
        return None
    layers = body.get("Layers")
    if not isinstance(layers, list) or not layers or not isinstance(layers[0], dict):
        return None
    latest = layers[0].get("LatestMatchingVersion")
    if not isinstance(latest, dict):
        return None
    arn = latest.get("LayerVersionArn")
    return arn if isinstance(arn, str) and arn else None


class LayerArnResolver:
    """Resolves layer ARNs once per (runtime, region) for the lifetime of the resolver.

    An override short-circuits every lookup. Concurrent callers asking for the same
    key share one remote call: the first caller fetches, the others wait on its result.
    Failed lookups are not cached, so a later call retries.
    """

    def __init__(self, override: str | None = None, fetch: LayerArnFetcher = fetch_layer_arn):
        self._override = override
        self._fetch = fetch
        self._lock = threading.Lock()
        self._results: dict[tuple[str, str], Future[str]] = {}

    def resolve(self, runtime: str, region: str) -> str:
        if self._override:
            return self._override

        key = (runtime, region)
        with self._lock:
            future = self._results.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._results[key] = future

        if not owner:
            return future.result()

        try:
            arn = self._fetch(runtime, region)
        except BaseException as e:
            with self._lock:
                del self._results[key]
            future.set_exception(e)
            raise
        future.set_result(arn)
        return arn
