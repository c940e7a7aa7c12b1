"""Storage keys and the declared kind of each one.

Every persisted value is addressed by a namespaced string key. The local
medium only stores text, so each key carries a fixed kind that decides how
its value is encoded:

    boolean     → literal "true" / "false"
    string      → the text itself, unquoted
    number      → bare number text
    structured  → JSON

Keys missing from the schema are treated as structured.
"""

from __future__ import annotations

from typing import Mapping

from monk_journey.models import ValueKind

KEY_PREFIX = "monk_journey_"


class StorageKeys:
    # Audio settings
    AUDIO_SETTINGS = "monk_journey_audio_settings"
    MUTED = "monk_journey_muted"
    MASTER_VOLUME = "monk_journey_master_volume"
    MUSIC_VOLUME = "monk_journey_music_volume"
    SFX_VOLUME = "monk_journey_sfx_volume"

    # Performance and quality
    QUALITY_LEVEL = "monk_journey_quality_level"
    ADAPTIVE_QUALITY = "monk_journey_adaptive_quality"
    TARGET_FPS = "monk_journey_target_fps"
    SHOW_PERFORMANCE_INFO = "monk_journey_show_performance_info"
    DEBUG_MODE = "monk_journey_debug_mode"
    LOG_ENABLED = "monk_journey_log_enabled"

    # Character
    CHARACTER_MODEL = "monk_journey_character_model"
    SELECTED_MODEL = "monk_journey_selected_model"
    SELECTED_SIZE = "monk_journey_selected_size"
    SELECTED_ANIMATION = "monk_journey_selected_animation"

    # Game
    DIFFICULTY = "monk_journey_difficulty"
    SELECTED_SKILLS = "monk_journey_selected_skills"
    SKILL_TREE_DATA = "monk_journey_skill_tree_data"
    SELECTED_ENEMY_PREVIEW = "monk_journey_selected_enemy_preview"
    SELECTED_ENEMY_ANIMATION = "monk_journey_selected_enemy_animation"
    SELECTED_ITEM_TYPE = "monk_journey_selected_item_type"
    SELECTED_ITEM_SUBTYPE = "monk_journey_selected_item_subtype"
    SELECTED_ITEM_RARITY = "monk_journey_selected_item_rarity"
    CUSTOM_SKILLS = "monk_journey_custom_skills"
    CAMERA_ZOOM = "monk_journey_camera_zoom"

    # Save system
    SAVE_DATA = "monk_journey_save"

    # Session bookkeeping, never leaves this device
    GOOGLE_AUTO_LOGIN = "monk_journey_google_auto_login"
    GOOGLE_LAST_LOGIN = "monk_journey_google_last_login"


def skill_variant_key(slot: int) -> str:
    """Key holding the selected variant for skill slot 1..8."""
    return f"monk_journey_selected_skill_variant_{slot}"


SAVE_DATA_KEY = StorageKeys.SAVE_DATA

LOCAL_ONLY_KEYS = frozenset({
    StorageKeys.GOOGLE_AUTO_LOGIN,
    StorageKeys.GOOGLE_LAST_LOGIN,
})

_BOOLEAN_KEYS = (
    StorageKeys.DEBUG_MODE,
    StorageKeys.LOG_ENABLED,
    StorageKeys.ADAPTIVE_QUALITY,
    StorageKeys.SHOW_PERFORMANCE_INFO,
    StorageKeys.MUTED,
    StorageKeys.CUSTOM_SKILLS,
    StorageKeys.GOOGLE_AUTO_LOGIN,
)

_STRING_KEYS = (
    StorageKeys.DIFFICULTY,
    StorageKeys.QUALITY_LEVEL,
    StorageKeys.CHARACTER_MODEL,
    StorageKeys.SELECTED_MODEL,
    StorageKeys.SELECTED_SIZE,
    StorageKeys.SELECTED_ANIMATION,
    StorageKeys.SELECTED_ENEMY_PREVIEW,
    StorageKeys.SELECTED_ENEMY_ANIMATION,
    StorageKeys.SELECTED_ITEM_TYPE,
    StorageKeys.SELECTED_ITEM_SUBTYPE,
    StorageKeys.SELECTED_ITEM_RARITY,
    *(skill_variant_key(i) for i in range(1, 9)),
)

_NUMBER_KEYS = (
    StorageKeys.TARGET_FPS,
    StorageKeys.CAMERA_ZOOM,
    StorageKeys.MASTER_VOLUME,
    StorageKeys.MUSIC_VOLUME,
    StorageKeys.SFX_VOLUME,
    StorageKeys.GOOGLE_LAST_LOGIN,
)

DEFAULT_SCHEMA: Mapping[str, ValueKind] = {
    **{k: "boolean" for k in _BOOLEAN_KEYS},
    **{k: "string" for k in _STRING_KEYS},
    **{k: "number" for k in _NUMBER_KEYS},
    StorageKeys.AUDIO_SETTINGS: "structured",
    StorageKeys.SELECTED_SKILLS: "structured",
    StorageKeys.SKILL_TREE_DATA: "structured",
    StorageKeys.SAVE_DATA: "structured",
}


def is_synced_key(key: str, prefix: str = KEY_PREFIX) -> bool:
    """True for game keys that are mirrored to the remote store."""
    return key.startswith(prefix) and key not in LOCAL_ONLY_KEYS
