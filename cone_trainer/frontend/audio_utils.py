"""
Recording format and capture constraint selection per device class.
"""
import re
import logging
from dataclasses import dataclass, asdict
from typing import Callable, Dict, Sequence

logger = logging.getLogger(__name__)

# Order of preference
RECORDING_FORMATS = (
    "audio/webm;codecs=opus",
    "audio/webm",
    "audio/ogg;codecs=opus",
    "audio/mp4",
    "audio/aac",
    "audio/wav",
)

# Empty string means the platform picks its default
DEFAULT_FORMAT = ""

CONSTRAINED_MOBILE_RE = re.compile(r"iphone|ipad|ipod", re.IGNORECASE)


@dataclass(frozen=True)
class AudioConstraints:
    echo_cancellation: bool
    noise_suppression: bool
    auto_gain_control: bool
    sample_rate: int
    channel_count: int

    def to_dict(self) -> Dict:
        """camelCase form used by capture backends"""
        values = asdict(self)
        return {
            "echoCancellation": values["echo_cancellation"],
            "noiseSuppression": values["noise_suppression"],
            "autoGainControl": values["auto_gain_control"],
            "sampleRate": values["sample_rate"],
            "channelCount": values["channel_count"],
        }


def select_recording_format(is_type_supported: Callable[[str], bool],
                            preferences: Sequence[str] = RECORDING_FORMATS) -> str:
    """First preferred format the runtime supports, else DEFAULT_FORMAT"""
    for format_id in preferences:
        if format_id == DEFAULT_FORMAT:
            break
        if is_type_supported(format_id):
            logger.debug(f"Selected recording format: {format_id}")
            return format_id
    logger.debug("No preferred recording format supported, using platform default")
    return DEFAULT_FORMAT


def select_constraints(constrained_mobile: bool) -> AudioConstraints:
    # Constrained mobile platforms only capture reliably at 48 kHz
    return AudioConstraints(
        echo_cancellation=True,
        noise_suppression=True,
        auto_gain_control=True,
        sample_rate=48000 if constrained_mobile else 16000,
        channel_count=1,
    )


def is_constrained_mobile(user_agent: str) -> bool:
    return bool(CONSTRAINED_MOBILE_RE.search(user_agent or ""))
