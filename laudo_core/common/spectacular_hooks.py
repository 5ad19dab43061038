# laudo_core/common/spectacular_hooks.py
from __future__ import annotations


def preprocess_exclude_legacy_api(endpoints):
    """
    ROOT_URLCONF mounts the API twice: /api/v1/ (primary) and /api/ (alias).

    drf-spectacular would document both, producing duplicate paths and
    operationId collisions (retrieve2, list2, ...). Keep /api/v1/* only.
    """
    return [
        (path, path_regex, method, callback)
        for path, path_regex, method, callback in endpoints
        if not (path.startswith("/api/") and not path.startswith("/api/v1/"))
    ]
