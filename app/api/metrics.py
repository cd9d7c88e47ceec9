"""
Custom Prometheus metrics for the change record pipeline.

These metrics track pipeline-specific operations beyond standard HTTP metrics.
"""

from prometheus_client import Counter, Gauge

# Dispatcher counters
change_records_received_total = Counter(
    "cdc_change_records_received_total",
    "Total number of change records handed to the dispatcher",
)

change_records_dispatched_total = Counter(
    "cdc_change_records_dispatched_total",
    "Change records converted into typed events",
    ["category"],  # authenticator_metrics / online_sessions
)

change_records_dropped_total = Counter(
    "cdc_change_records_dropped_total",
    "Change records dropped by the dispatcher",
    ["reason"],  # tombstone / unknown_table / malformed / error
)

# Broadcast hub counters
hub_events_published_total = Counter(
    "cdc_hub_events_published_total",
    "Events published on a broadcast hub channel",
    ["category"],
)

hub_events_dropped_total = Counter(
    "cdc_hub_events_dropped_total",
    "Events dropped for a slow subscriber after its buffers filled",
    ["category"],
)

hub_subscribers = Gauge(
    "cdc_hub_subscribers",
    "Active subscribers per broadcast hub channel",
    ["category"],
)

# Aggregation counters
aggregation_windows_total = Counter(
    "cdc_aggregation_windows_total",
    "Aggregation windows closed",
    ["outcome"],  # emitted / suppressed / empty
)

# Pipeline state
pipeline_running = Gauge(
    "cdc_pipeline_running",
    "1 while the change record pipeline is running",
)
