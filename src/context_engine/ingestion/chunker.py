"""Token-based text chunking strategies and the chunker registry.

The default ``recursive`` chunker splits on a hierarchy of separators
(paragraph → line → sentence → clause → word → character), recursing into
pieces that are still too large, then greedily merges the pieces back into
chunks of at most ``chunk_size`` tokens with ``chunk_overlap`` tokens of
carry-over between neighbours.  Tokens are counted with ``tiktoken``.

Chunkers are plain callables ``(content, options) -> list[ChunkText]`` so a
custom one can be dropped in without subclassing anything.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

import tiktoken
from pydantic import BaseModel, Field, model_validator

from context_engine.config import settings
from context_engine.errors import ChunkerNotFoundError, ConfigurationError
from context_engine.models import ChunkText

logger = logging.getLogger(__name__)

DEFAULT_SEPARATORS: list[str] = [
    "\n\n",  # paragraphs
    "\n",  # lines
    ". ",
    "? ",
    "! ",
    "; ",
    ": ",
    ", ",
    " ",  # words
    "",  # characters (last resort)
]

class ChunkingOptions(BaseModel):
    """Size limits for a chunker run (all sizes in tokens)."""

    chunk_size: int = Field(default_factory=lambda: settings.chunk_size, gt=0)
    chunk_overlap: int = Field(default_factory=lambda: settings.chunk_overlap, ge=0)
    min_chunk_size: int = Field(default_factory=lambda: settings.min_chunk_size, ge=0)
    separators: list[str] = Field(default_factory=lambda: list(DEFAULT_SEPARATORS))

    @model_validator(mode="after")
    def _overlap_below_size(self) -> ChunkingOptions:
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"chunk_overlap ({self.chunk_overlap}) must be < chunk_size ({self.chunk_size})"
            )
        return self


Chunker = Callable[[str, ChunkingOptions], list[ChunkText]]


# ---------------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------------


@lru_cache(maxsize=4)
def get_encoding(name: str | None = None) -> tiktoken.Encoding:
    """Return (and cache) the tiktoken encoding used for counting."""
    return tiktoken.get_encoding(name or settings.tokenizer_encoding)


def encode(text: str) -> list[int]:
    # Special-token strings in user text are counted as plain text.
    return get_encoding().encode(text, disallowed_special=())


def count_tokens(text: str) -> int:
    """Number of tokens in *text*."""
    return len(encode(text))


def _overlap_text(text: str, overlap_tokens: int) -> str:
    """Return the last *overlap_tokens* tokens of *text*, widened to a character boundary."""
    tokens = encode(text)
    if len(tokens) <= overlap_tokens:
        return text
    decoded, offsets = get_encoding().decode_with_offsets(tokens)
    return decoded[offsets[-overlap_tokens]:]


# ---------------------------------------------------------------------------
# Recursive splitter
# ---------------------------------------------------------------------------


def _split_keep_separator(text: str, separator: str) -> list[str]:
    if separator == "":
        return list(text)

    parts = text.split(separator)
    pieces: list[str] = []
    for i, part in enumerate(parts):
        if i < len(parts) - 1:
            pieces.append(part + separator)
        elif part:
            pieces.append(part)
    return pieces


def _force_split(text: str, chunk_size: int, chunk_overlap: int) -> list[str]:
    """Cut *text* into raw token windows with stride ``chunk_size - chunk_overlap``."""
    tokens = encode(text)
    stride = max(1, chunk_size - chunk_overlap)
    # Offsets are character starts, so a multi-byte character split across
    # tokens lands whole in exactly one window.
    decoded, offsets = get_encoding().decode_with_offsets(tokens)

    pieces: list[str] = []
    for start in range(0, len(tokens), stride):
        end = start + chunk_size
        stop = offsets[end] if end < len(tokens) else len(decoded)
        piece = decoded[offsets[start] : stop].strip()
        if piece:
            pieces.append(piece)
        if start + chunk_size >= len(tokens):
            break
    return pieces


def _merge_pieces(pieces: list[str], options: ChunkingOptions) -> list[str]:
    """Greedily pack *pieces* into chunks of at most ``chunk_size`` tokens."""
    chunks: list[str] = []
    current = ""
    current_tokens = 0

    def close(text: str, tokens: int) -> None:
        text = text.strip()
        if not text:
            return
        if tokens < options.min_chunk_size and chunks:
            chunks[-1] = f"{chunks[-1]} {text}"
        else:
            chunks.append(text)

    for piece in pieces:
        piece_tokens = count_tokens(piece)
        if current and current_tokens + piece_tokens > options.chunk_size:
            close(current, current_tokens)
            if options.chunk_overlap > 0:
                current = _overlap_text(current, options.chunk_overlap) + piece
                current_tokens = count_tokens(current)
            else:
                current = piece
                current_tokens = piece_tokens
        else:
            current += piece
            current_tokens += piece_tokens

    close(current, current_tokens)
    return chunks


def _recursive_split(text: str, separators: list[str], options: ChunkingOptions) -> list[str]:
    if count_tokens(text) <= options.chunk_size:
        return [text.strip()] if text.strip() else []

    separator = ""
    remaining: list[str] = []
    for i, sep in enumerate(separators):
        if sep == "" or sep in text:
            separator = sep
            remaining = separators[i + 1 :]
            break

    pieces: list[str] = []
    for piece in _split_keep_separator(text, separator):
        if count_tokens(piece) <= options.chunk_size:
            pieces.append(piece)
        elif remaining:
            pieces.extend(_recursive_split(piece, remaining, options))
        else:
            pieces.extend(_force_split(piece, options.chunk_size, options.chunk_overlap))

    return _merge_pieces(pieces, options)


def _to_chunk_texts(pieces: list[str]) -> list[ChunkText]:
    return [ChunkText(index=i, content=p, token_count=count_tokens(p)) for i, p in enumerate(pieces)]


def recursive_chunker(content: str, options: ChunkingOptions) -> list[ChunkText]:
    """Split *content* along the separator hierarchy (default chunker)."""
    if not content.strip():
        return []
    return _to_chunk_texts(_recursive_split(content, options.separators, options))


def token_chunker(content: str, options: ChunkingOptions) -> list[ChunkText]:
    """Fixed token windows with overlap; a too-small tail joins its predecessor."""
    if not content.strip():
        return []

    pieces = _force_split(content, options.chunk_size, options.chunk_overlap)
    if len(pieces) > 1 and count_tokens(pieces[-1]) < options.min_chunk_size:
        tail = pieces.pop()
        pieces[-1] = f"{pieces[-1]} {tail}".strip()
    return _to_chunk_texts(pieces)


default_chunker: Chunker = recursive_chunker


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


@dataclass
class ChunkerPlugin:
    """A named chunker factory, registered at startup.

    ``create_chunker`` receives the ``options`` mapping from
    :class:`ChunkingConfig` and returns a chunker callable.
    """

    name: str
    create_chunker: Callable[[dict[str, Any] | None], Chunker]


@dataclass
class ChunkingConfig:
    """How an engine picks its chunker.

    ``method`` is ``"recursive"``, ``"token"``, ``"custom"`` (requires
    ``chunker``) or the name of a registered plugin.
    """

    method: str = "recursive"
    options: dict[str, Any] | None = None
    chunker: Chunker | None = None


_BUILT_IN: dict[str, Chunker] = {
    "recursive": recursive_chunker,
    "token": token_chunker,
}
_plugins: dict[str, ChunkerPlugin] = {}


def register_chunker_plugin(plugin: ChunkerPlugin) -> None:
    """Make *plugin* resolvable by name.  Re-registering a name replaces it."""
    if plugin.name in _BUILT_IN or plugin.name == "custom":
        raise ConfigurationError(f"Chunker name {plugin.name!r} is reserved")
    _plugins[plugin.name] = plugin
    logger.debug("Registered chunker plugin %r", plugin.name)


def unregister_chunker_plugin(name: str) -> None:
    _plugins.pop(name, None)


def list_chunker_plugins() -> list[str]:
    return list(_plugins)


def is_chunker_available(method: str) -> bool:
    return method == "custom" or method in _BUILT_IN or method in _plugins


def get_available_chunkers() -> dict[str, list[str]]:
    return {"built_in": list(_BUILT_IN), "plugins": list(_plugins)}


def resolve_chunker(config: ChunkingConfig | None = None) -> Chunker:
    """Map a :class:`ChunkingConfig` to a chunker callable.

    Raises
    ------
    ConfigurationError
        ``method="custom"`` without a ``chunker`` function.
    ChunkerNotFoundError
        ``method`` is neither built in nor a registered plugin.
    """
    if config is None or not config.method:
        return default_chunker

    if config.method == "custom":
        if config.chunker is None:
            raise ConfigurationError('Chunking method "custom" requires a chunker function')
        return config.chunker

    built_in = _BUILT_IN.get(config.method)
    if built_in is not None:
        return built_in

    plugin = _plugins.get(config.method)
    if plugin is not None:
        return plugin.create_chunker(config.options)

    raise ChunkerNotFoundError(config.method)


def resolve_chunking_options(
    base: ChunkingOptions | None = None,
    overrides: dict[str, Any] | None = None,
) -> ChunkingOptions:
    """Overlay *overrides* (``None`` values ignored) on *base* and re-validate."""
    base = base or ChunkingOptions()
    if not overrides:
        return base
    data = base.model_dump()
    data.update({k: v for k, v in overrides.items() if v is not None})
    return ChunkingOptions.model_validate(data)
