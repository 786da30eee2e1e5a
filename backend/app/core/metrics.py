"""Prometheus metrics for the application"""
from prometheus_client import Counter, REGISTRY


def _counter(name: str, documentation: str, labelnames=()):
    """Create a counter, reusing the registered collector on module reload"""
    try:
        return Counter(name, documentation, labelnames)
    except ValueError:
        # prometheus_client strips the _total suffix from the registered name
        return (
            REGISTRY._names_to_collectors.get(name)
            or REGISTRY._names_to_collectors.get(name.removesuffix("_total"))
        )


# Ledger metrics
usage_recorded_counter = _counter(
    'ledger_usage_recorded_total',
    'Total number of token usage entries recorded',
    ['billable']
)

tokens_deducted_counter = _counter(
    'ledger_tokens_deducted_total',
    'Total ledger tokens deducted from subscriptions'
)

insufficient_credits_counter = _counter(
    'ledger_insufficient_credits_total',
    'Total number of usage events rejected for insufficient credits',
    ['reason']
)

# Grant / purchase metrics
credits_granted_counter = _counter(
    'ledger_credit_grants_total',
    'Total number of allowance merges into subscriptions',
    ['source']
)

# Admission metrics
admission_decisions_counter = _counter(
    'ledger_admission_decisions_total',
    'Total number of chat admission decisions',
    ['outcome']
)
