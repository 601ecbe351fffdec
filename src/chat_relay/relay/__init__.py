"""Streaming relay core: conversation, directive scanning, emission, images."""

from .conversation import Conversation
from .directive import DirectiveMatch, DirectiveScanner, find_directive
from .emitter import RelayEmitter, VisibleTextFilter
from .images import ImagePipeline, ImageResult, ImageVariant, variants_for_policy
from .session import RelaySession, load_system_prompt
from .turn import TurnOutcome, TurnProcessor

__all__ = [
    "Conversation",
    "DirectiveMatch",
    "DirectiveScanner",
    "ImagePipeline",
    "ImageResult",
    "ImageVariant",
    "RelayEmitter",
    "RelaySession",
    "TurnOutcome",
    "TurnProcessor",
    "VisibleTextFilter",
    "find_directive",
    "load_system_prompt",
    "variants_for_policy",
]
