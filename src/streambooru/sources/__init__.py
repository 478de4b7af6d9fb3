"""Source adapters and registry."""

from .base import SourceAdapter
from .danbooru import DanbooruSource
from .derpibooru import DerpibooruSource
from .e621 import E621Source
from .gelbooru import GelbooruSource
from .moebooru import MoebooruSource
from .registry import (
    SourceRegistrationError,
    create_source,
    register_source,
    registered_source_types,
)

__all__ = [
    "SourceAdapter",
    "DanbooruSource",
    "DerpibooruSource",
    "E621Source",
    "GelbooruSource",
    "MoebooruSource",
    "SourceRegistrationError",
    "create_source",
    "register_source",
    "registered_source_types",
]
