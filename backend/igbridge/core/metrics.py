"""Prometheus metrics for the application"""
from prometheus_client import Counter, REGISTRY


def _counter(name: str, documentation: str, labelnames=()):
    # Re-importing this module (e.g. under test reloads) must not re-register collectors
    try:
        return Counter(name, documentation, labelnames)
    except ValueError:
        return REGISTRY._names_to_collectors.get(name)


# Publish metrics
publish_attempts_counter = _counter(
    'igbridge_publish_attempts_total',
    'Total number of Instagram publish attempts',
    ['status']
)

# Token refresh metrics
token_refresh_counter = _counter(
    'igbridge_token_refresh_total',
    'Total number of access token refresh operations',
    ['result']
)

# Scheduler metrics
scheduler_runs_counter = _counter(
    'igbridge_scheduler_runs_total',
    'Total number of token refresh scheduler runs',
    ['status']
)

# License metrics
license_validations_counter = _counter(
    'igbridge_license_validations_total',
    'Total number of license validations',
    ['result']
)

# OAuth metrics
oauth_callbacks_counter = _counter(
    'igbridge_oauth_callbacks_total',
    'Total number of OAuth callback completions',
    ['status']
)
