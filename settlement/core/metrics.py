"""
Prometheus metrics definitions for the Settlement Service

This module centralizes all metric definitions to ensure consistency
and avoid duplicate metric registration errors.
"""

from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry

# Create a custom registry (optional - can use default REGISTRY)
registry = CollectorRegistry()

# =============================================================================
# HTTP API METRICS
# =============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint, and status code group",
    ["method", "endpoint", "status_code"],
    registry=registry,
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
    registry=registry,
)

http_requests_in_progress = Gauge(
    "http_requests_in_progress",
    "Number of HTTP requests currently being processed",
    ["method", "endpoint"],
    registry=registry,
)

# =============================================================================
# DATABASE METRICS
# =============================================================================

# Connection Pool Metrics
db_pool_in_use = Gauge(
    "db_pool_in_use",
    "Number of database connections currently in use",
    registry=registry,
)

db_pool_available = Gauge(
    "db_pool_available",
    "Number of idle database connections available",
    registry=registry,
)

db_pool_wait_seconds = Histogram(
    "db_pool_wait_seconds",
    "Time spent waiting for a database connection",
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
    registry=registry,
)

# Query Metrics
db_query_duration_seconds = Histogram(
    "db_query_duration_seconds",
    "Database query execution time in seconds",
    ["operation", "table"],
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
    registry=registry,
)

db_queries_total = Counter(
    "db_queries_total",
    "Total number of database queries by operation type",
    ["operation"],
    registry=registry,
)

db_query_errors_total = Counter(
    "db_query_errors_total",
    "Total number of database query errors by type",
    ["error_type"],
    registry=registry,
)

# =============================================================================
# REDIS METRICS
# =============================================================================

redis_commands_total = Counter(
    "redis_commands_total",
    "Total Redis commands executed by command type",
    ["command"],
    registry=registry,
)

redis_command_duration_seconds = Histogram(
    "redis_command_duration_seconds",
    "Redis command execution time in seconds",
    ["command"],
    buckets=(0.0001, 0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5),
    registry=registry,
)

redis_errors_total = Counter(
    "redis_errors_total",
    "Total Redis errors by type",
    ["error_type"],
    registry=registry,
)

# =============================================================================
# KAFKA EVENT METRICS
# =============================================================================

kafka_events_published_total = Counter(
    "kafka_events_published_total",
    "Total events published to Kafka",
    ["topic", "event_type", "status"],
    registry=registry,
)

kafka_events_consumed_total = Counter(
    "kafka_events_consumed_total",
    "Total events consumed from Kafka",
    ["topic", "event_type", "status"],
    registry=registry,
)

kafka_publish_duration_seconds = Histogram(
    "kafka_publish_duration_seconds",
    "Time taken to publish events to Kafka",
    ["topic", "event_type"],
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
    registry=registry,
)

kafka_consumer_lag_messages = Gauge(
    "kafka_consumer_lag_messages",
    "Number of messages the consumer is lagging behind",
    ["topic", "consumer_group"],
    registry=registry,
)

kafka_events_duplicate_total = Counter(
    "kafka_events_duplicate_total",
    "Total duplicate events detected (idempotency check)",
    ["topic", "event_type"],
    registry=registry,
)

# =============================================================================
# OUTBOX PATTERN METRICS
# =============================================================================

outbox_events_pending = Gauge(
    "outbox_events_pending",
    "Number of unpublished events in the outbox table",
    registry=registry,
)

outbox_events_processed_total = Counter(
    "outbox_events_processed_total",
    "Total outbox events processed",
    ["status"],
    registry=registry,
)

outbox_publish_duration_seconds = Histogram(
    "outbox_publish_duration_seconds",
    "Time taken to publish events from outbox to Kafka",
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
    registry=registry,
)

outbox_retry_attempts_total = Counter(
    "outbox_retry_attempts_total",
    "Total number of retry attempts for failed outbox events",
    ["event_type"],
    registry=registry,
)

# =============================================================================
# BACKGROUND TASK METRICS
# =============================================================================

background_tasks_running = Gauge(
    "background_tasks_running",
    "Number of background tasks currently running",
    ["task_name"],
    registry=registry,
)

background_task_errors_total = Counter(
    "background_task_errors_total",
    "Total errors in background tasks",
    ["task_name", "error_type"],
    registry=registry,
)

# =============================================================================
# SETTLEMENT METRICS
# =============================================================================

checkouts_initialized_total = Counter(
    "checkouts_initialized_total",
    "Payment initializations by payment method and outcome",
    ["payment_method", "outcome"],  # success, rejected, gateway_error
    registry=registry,
)

checkouts_confirmed_total = Counter(
    "checkouts_confirmed_total",
    "Checkout confirmations by outcome",
    ["outcome"],  # success, verification_failed, postcondition_failed, duplicate, error
    registry=registry,
)

payment_holds_created_total = Counter(
    "payment_holds_created_total",
    "Escrow holds created",
    ["currency"],
    registry=registry,
)

hold_release_total = Counter(
    "hold_release_total",
    "Buyer delivery confirmations by hold release outcome",
    ["outcome"],  # released, missing_hold
    registry=registry,
)

order_transitions_total = Counter(
    "order_transitions_total",
    "Order state transitions by actor and transition",
    ["actor", "transition"],
    registry=registry,
)

gateway_calls_total = Counter(
    "gateway_calls_total",
    "Payment gateway calls by operation and outcome",
    ["operation", "outcome"],  # outcome: success, auth, connectivity, validation, unknown
    registry=registry,
)

gateway_call_duration_seconds = Histogram(
    "gateway_call_duration_seconds",
    "Payment gateway call latency in seconds",
    ["operation"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0),
    registry=registry,
)

notifications_total = Counter(
    "notifications_total",
    "Notification deliveries by channel and status",
    ["channel", "status"],  # channel: db, email; status: sent, failed, skipped
    registry=registry,
)

webhook_events_total = Counter(
    "webhook_events_total",
    "Gateway webhook deliveries by event type and result",
    ["event_type", "result"],
    registry=registry,
)
