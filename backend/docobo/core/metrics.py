"""Prometheus metrics for the webhook service"""
from prometheus_client import Counter, REGISTRY


def _counter(name, documentation, labelnames=()):
    # Re-importing the module (e.g. under test reloads) must not double-register
    try:
        return Counter(name, documentation, labelnames)
    except ValueError:
        return REGISTRY._names_to_collectors.get(name)


# Ingress: one increment per HTTP delivery
webhook_requests_counter = _counter(
    'docobo_webhook_requests_total',
    'Inbound webhook deliveries by provider and transport outcome',
    ['provider', 'outcome']
)

# Background pipeline: one increment per recorded event
webhook_events_processed_counter = _counter(
    'docobo_webhook_events_processed_total',
    'Webhook events processed by the background worker',
    ['provider', 'result']
)

role_effects_counter = _counter(
    'docobo_role_effects_total',
    'Discord role grant/revoke attempts by result',
    ['action', 'result']
)

# Events that referenced a subscription this service does not track, or one
# already in a terminal state. Both are no-ops; the label tells them apart.
untracked_subscription_events_counter = _counter(
    'docobo_untracked_subscription_events_total',
    'Subscription events that produced no mutation',
    ['event_type', 'reason']
)
