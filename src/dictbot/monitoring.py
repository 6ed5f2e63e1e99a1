"""Monitoring configuration for the bot."""
from prometheus_client import Counter, Gauge, start_http_server

# Session metrics
active_sessions = Gauge(
    "dictbot_active_sessions",
    "Number of study sessions currently held in memory",
)

units_opened = Counter(
    "dictbot_units_opened_total",
    "Total number of lesson units opened",
    ["unit_id"],
)

# Study metrics
cards_flipped = Counter(
    "dictbot_cards_flipped_total",
    "Total number of card flips",
)

marks = Counter(
    "dictbot_marks_total",
    "Total number of correct/review marks",
    ["kind"],
)

audio_requests = Counter(
    "dictbot_audio_requests_total",
    "Audio playback requests by outcome",
    ["result"],
)

# Loading metrics
lesson_load_failures = Counter(
    "dictbot_lesson_load_failures_total",
    "Total number of failed unit index or lesson fetches",
    ["source"],
)

# Error metrics
error_count = Counter(
    "dictbot_errors_total",
    "Total number of errors encountered",
    ["error_type"],
)


def start_monitoring(port: int = 9090) -> None:
    """Start the Prometheus metrics server."""
    start_http_server(port)
