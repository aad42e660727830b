# app/tags.py

from typing import Iterable, List

GOOD = "GOOD"
UNKNOWN = "UNKNOWN"

# Order matters: used as the tie-breaker when ranking issues
ISSUE_TAGS: list[str] = [
    "FORWARD_HEAD",
    "UNEQUAL_SHOULDERS",
    "UPPER_BODY_TILT",
    "TOO_CLOSE",
    "ASYMMETRIC_POSTURE",
    "HEAD_TILT",
    "LEANING_ON_ARM",
]

NON_WARNING_TAGS = frozenset({GOOD, UNKNOWN})

# Daily aggregate column per issue tag
ISSUE_COLUMNS: dict[str, str] = {
    "FORWARD_HEAD": "forward_head_count",
    "UNEQUAL_SHOULDERS": "unequal_shoulders_count",
    "UPPER_BODY_TILT": "upper_body_tilt_count",
    "TOO_CLOSE": "too_close_count",
    "ASYMMETRIC_POSTURE": "asymmetric_posture_count",
    "HEAD_TILT": "head_tilt_count",
    "LEANING_ON_ARM": "leaning_on_arm_count",
}

FEEDBACK_MESSAGES: dict[str, str] = {
    GOOD: "Great! You are keeping a correct posture. Keep it up.",
    "FORWARD_HEAD": "Forward head detected! Tuck your chin and move your head back over your shoulders.",
    "UNEQUAL_SHOULDERS": "Uneven shoulders detected! Stretch your upper trapezius and open up your chest.",
    "UPPER_BODY_TILT": "Upper body tilt detected! Lean back against the chair and re-center your torso.",
    "TOO_CLOSE": "Too close to the screen! Push your chair back and relax your chest.",
    "ASYMMETRIC_POSTURE": "Asymmetric posture detected! Try a spinal twist or cross-shoulder stretch.",
    "HEAD_TILT": "Head tilt detected! Stretch the side of your neck, ear towards shoulder.",
    "LEANING_ON_ARM": "Leaning on your arm! Stretch your wrists, then rest both hands on your knees.",
}

DEFAULT_MESSAGE = "Receiving posture analysis. Please wait a moment."
WAITING_MESSAGE = "Waiting for monitoring data."


def normalize_tag(tag: str) -> str:
    return tag.strip().upper()


def normalize_tags(tags: Iterable[str]) -> List[str]:
    """Strip and upper-case tags, dropping blanks. Order is preserved."""
    return [normalize_tag(t) for t in tags if t and t.strip()]


def is_warning_tag(tag: str) -> bool:
    return normalize_tag(tag) not in NON_WARNING_TAGS


def is_warning_event(tags: Iterable[str]) -> bool:
    """
    A tick is worth persisting if any tag is neither GOOD nor UNKNOWN.
    """
    return any(is_warning_tag(t) for t in tags)


def is_issue_tag(tag: str) -> bool:
    return normalize_tag(tag) in ISSUE_COLUMNS


def feedback_message(tag: str) -> str:
    return FEEDBACK_MESSAGES.get(normalize_tag(tag), DEFAULT_MESSAGE)
