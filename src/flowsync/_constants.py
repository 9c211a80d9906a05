"""Internal constants shared across the library."""

BASE_URL = "http://localhost:3000"
PUSH_URL = "ws://localhost:3000/ws"
DEFAULT_TOPIC = "flow-optimization"
SNAPSHOT_PATH = "/api/flow-optimization/data"
APPLY_SUGGESTIONS_PATH = "/api/flow-optimization/suggestions/apply"
USER_AGENT = "flowsync/1"

# ------------------------------------------------------------------
# Push message types
# ------------------------------------------------------------------

MSG_SUBSCRIBE = "subscribe"
MSG_PING = "ping"
MSG_PONG = "pong"
MSG_FLOW_METRICS_UPDATE = "flow-metrics-update"
MSG_BOTTLENECK_DETECTED = "bottleneck-detected"
MSG_OPTIMIZATION_SUGGESTION = "optimization-suggestion"

# Threshold to distinguish seconds from milliseconds in epoch timestamps.
MS_THRESHOLD = 1_000_000_000_000
