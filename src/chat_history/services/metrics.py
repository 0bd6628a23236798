"""Operational counters for the history manager."""

from prometheus_client import CollectorRegistry, Counter, generate_latest

# Registry for isolated metric collection
CUSTOM_REGISTRY = CollectorRegistry()

MESSAGES_APPENDED = Counter(
    "chat_history_messages_appended_total",
    "Messages appended to conversation logs",
    ["backend"],
    registry=CUSTOM_REGISTRY,
)
CONVERSATIONS_DELETED = Counter(
    "chat_history_conversations_deleted_total",
    "Conversations deleted with their logs",
    ["backend"],
    registry=CUSTOM_REGISTRY,
)
HISTORY_QUERIES = Counter(
    "chat_history_queries_total",
    "History queries served",
    ["backend"],
    registry=CUSTOM_REGISTRY,
)
CONSISTENCY_FAULTS = Counter(
    "chat_history_consistency_faults_total",
    "Mutations rolled back because log and state disagreed",
    ["backend"],
    registry=CUSTOM_REGISTRY,
)


def render_metrics() -> bytes:
    """Prometheus exposition text for all history counters."""
    return generate_latest(CUSTOM_REGISTRY)
