from __future__ import annotations

from typing import Callable, Optional

from mentacare.config import configure_logging, load_config

_APP: Optional[Callable] = None


def _load_app() -> Callable:
    global _APP
    if _APP is not None:
        return _APP

    from mentacare.api import create_app

    config = load_config()
    configure_logging(config.log_level)
    _APP = create_app(config)
    return _APP


def app(environ, start_response):
    backend = _load_app()
    return backend(environ, start_response)
