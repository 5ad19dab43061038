# laudo_core/common/signals.py
from __future__ import annotations

from laudo_core.common.crypto import get_codec


def reset_codec_on_key_change(*, setting, **kwargs) -> None:
    if setting in ("FIELD_ENCRYPTION_KEYS", "SECRET_KEY"):
        get_codec.cache_clear()
