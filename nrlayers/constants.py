MIN_FRAMEWORK_VERSION = "1.34.0"
PLUGIN_NAME = "serverless-newrelic-layers"
BUNDLER_PLUGIN_NAME = "serverless-webpack"
DEFAULT_STAGE = "dev"

LAYER_LOOKUP_URL = "https://{region}.nr-layers.iopipe.com/get-layers"
LAYER_LOOKUP_TIMEOUT = 10

LOG_INGESTION_FUNCTION_NAME = "newrelic-log-ingestion"
LOG_FILTER_NAME = "NewRelicLogStreaming"
LOG_FILTER_PATTERN = "NR_LAMBDA_MONITORING"
LOG_GROUP_NAME = "/aws/lambda/{function_name}"

NODE_WRAPPER_HANDLER = "newrelic-lambda-wrapper.handler"
PYTHON_WRAPPER_HANDLER = "newrelic_lambda_wrapper.handler"
NODE_WRAPPER_INCLUDE = "!newrelic-lambda-wrapper.handler"

ENV_LAMBDA_HANDLER = "NEW_RELIC_LAMBDA_HANDLER"
ENV_LOG = "NEW_RELIC_LOG"
ENV_LOG_LEVEL = "NEW_RELIC_LOG_LEVEL"
ENV_NO_CONFIG_FILE = "NEW_RELIC_NO_CONFIG_FILE"
ENV_APP_NAME = "NEW_RELIC_APP_NAME"
ENV_ACCOUNT_ID = "NEW_RELIC_ACCOUNT_ID"
ENV_TRUSTED_ACCOUNT_KEY = "NEW_RELIC_TRUSTED_ACCOUNT_KEY"
ENV_SERVERLESS_MODE_ENABLED = "NEW_RELIC_SERVERLESS_MODE_ENABLED"
