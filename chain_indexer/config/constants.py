"""
Application constants.

Centralized constants for the indexer.
"""

# ========================================================================
# INDEXING CONSTANTS
# ========================================================================

# Chunking
DEFAULT_CHUNK_SIZE = 200_000  # Blocks per historical chunk
DEFAULT_POLLING_INTERVAL = 30.0  # Seconds between incremental ticks

# Deployment discovery
MIN_SEARCHABLE_HEAD = 100  # Chains younger than this are not bisected
SECONDS_PER_DAY = 86_400
UNLIMITED_HISTORY = -1  # historical_days value meaning "since deployment"

# ========================================================================
# RPC CONSTANTS
# ========================================================================

# Timeouts (in seconds)
RPC_DATA_TIMEOUT = 30.0  # Log queries and block-height queries
RPC_PROBE_TIMEOUT = 5.0  # Background health probes
EXPLORER_TIMEOUT = 10.0  # Explorer API lookups

# Retry settings
RPC_MAX_RETRIES = 3  # Retries after the first attempt
RPC_RETRY_DELAY_BASE = 1.0  # Base delay in seconds for exponential backoff
RPC_RETRY_MAX_DELAY = 30.0  # Backoff cap
RPC_RETRY_JITTER = 1.0  # Max uniform jitter added to each delay

# Endpoint health
ENDPOINT_FAILURE_THRESHOLD = 5  # Consecutive failures before demotion
HEALTH_CHECK_INTERVAL = 60.0  # Seconds between endpoint probe rounds

# Circuit breaker
CIRCUIT_BREAKER_THRESHOLD = 5
CIRCUIT_BREAKER_TIMEOUT = 60.0

# ========================================================================
# OBSERVABILITY CONSTANTS
# ========================================================================

HEALTH_MONITOR_INTERVAL = 30.0
HEALTH_HISTORY_LIMIT = 100
HEALTH_ALERTS_LIMIT = 50
MIN_FREE_DISK_PERCENT = 10.0
LATENCY_SAMPLE_LIMIT = 100

# Notifications
NOTIFICATION_QUEUE_SIZE = 1000
NOTIFICATION_BUFFER_PER_USER = 50

# Anomaly detection
ANOMALY_SAMPLE_LIMIT = 100
ANOMALY_MIN_SAMPLES = 10
ANOMALY_SIGMA_THRESHOLD = 3.0

# Shutdown
SHUTDOWN_TIMEOUT = 30.0
