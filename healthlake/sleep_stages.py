"""Canonical sleep stage vocabulary and locale normalization."""

import enum
from typing import Tuple


class SleepStage(str, enum.Enum):
    AWAKE = "Awake"
    CORE = "Core"
    DEEP = "Deep"
    REM = "REM"
    IN_BED = "In Bed"
    ASLEEP = "Asleep"


# Stage fields of a .hae sleep data point, in detection order.
STAGE_FIELDS = (
    ("awake", SleepStage.AWAKE),
    ("core", SleepStage.CORE),
    ("deep", SleepStage.DEEP),
    ("rem", SleepStage.REM),
    ("inBed", SleepStage.IN_BED),
)

# Lowercased localized names -> canonical stage.
_LOCALIZED = {
    # English
    "core": SleepStage.CORE,
    "deep": SleepStage.DEEP,
    "rem": SleepStage.REM,
    "awake": SleepStage.AWAKE,
    "in bed": SleepStage.IN_BED,
    "inbed": SleepStage.IN_BED,
    "asleep": SleepStage.ASLEEP,
    # German
    "kern": SleepStage.CORE,
    "tief": SleepStage.DEEP,
    "wach": SleepStage.AWAKE,
    "im bett": SleepStage.IN_BED,
    # French
    "paradoxal": SleepStage.REM,
    "profond": SleepStage.DEEP,
    "léger": SleepStage.CORE,
    "leger": SleepStage.CORE,
    "éveillé": SleepStage.AWAKE,
    "eveille": SleepStage.AWAKE,
    "au lit": SleepStage.IN_BED,
    "endormi": SleepStage.ASLEEP,
    # Spanish ("principal" is shared with Portuguese)
    "profundo": SleepStage.DEEP,
    "principal": SleepStage.CORE,
    "despierto": SleepStage.AWAKE,
    "despierta": SleepStage.AWAKE,
    "en la cama": SleepStage.IN_BED,
    "dormido": SleepStage.ASLEEP,
    "dormida": SleepStage.ASLEEP,
    # Italian
    "profondo": SleepStage.DEEP,
    "essenziale": SleepStage.CORE,
    "sveglio": SleepStage.AWAKE,
    "sveglia": SleepStage.AWAKE,
    "a letto": SleepStage.IN_BED,
    "addormentato": SleepStage.ASLEEP,
    # Portuguese
    "sono profundo": SleepStage.DEEP,
    "acordado": SleepStage.AWAKE,
    "acordada": SleepStage.AWAKE,
    "na cama": SleepStage.IN_BED,
    "dormindo": SleepStage.ASLEEP,
    # Dutch
    "diep": SleepStage.DEEP,
    "wakker": SleepStage.AWAKE,
    "slapend": SleepStage.ASLEEP,
    # Japanese
    "コア": SleepStage.CORE,
    "深い": SleepStage.DEEP,
    "レム": SleepStage.REM,
    "覚醒": SleepStage.AWAKE,
    "ベッドで": SleepStage.IN_BED,
    # Chinese (simplified)
    "核心": SleepStage.CORE,
    "深度": SleepStage.DEEP,
    "快速眼动": SleepStage.REM,
    "清醒": SleepStage.AWAKE,
    "在床上": SleepStage.IN_BED,
    # Chinese (traditional)
    "核心睡眠": SleepStage.CORE,
    "深層": SleepStage.DEEP,
    "快速動眼": SleepStage.REM,
    # Korean
    "코어": SleepStage.CORE,
    "깊은": SleepStage.DEEP,
    "렘": SleepStage.REM,
    "깨어있음": SleepStage.AWAKE,
    "침대에서": SleepStage.IN_BED,
}


def normalize_stage(raw: str) -> Tuple[str, bool]:
    """Map a possibly localized stage name to its canonical English label.

    Returns ``(canonical, True)`` when recognized, ``(raw, False)`` otherwise.
    """
    stage = _LOCALIZED.get((raw or "").strip().lower())
    if stage is None:
        return raw, False
    return stage.value, True


def is_canonical(label: str) -> bool:
    return label in {s.value for s in SleepStage}
