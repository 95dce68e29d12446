from .json_parser import safe_parse_json
from .logger import EventLogger, setup_logging
from .session_transcript import SessionTranscript
from .token_estimation import SmartTokenEstimator, count_tokens, get_estimator

__all__ = [
    "safe_parse_json",
    "EventLogger",
    "setup_logging",
    "SessionTranscript",
    "SmartTokenEstimator",
    "count_tokens",
    "get_estimator",
]
