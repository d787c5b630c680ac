"""
Extract object ids referenced from embedded block markup.

Block-based content stores structured blocks as HTML comments::

    <!-- wp:image {"id":123,"sizeSlug":"large"} /-->
    <!-- wp:gallery {"ids":[4,5,6]} -->

Only the JSON attributes are inspected; attribute keys listed in
:data:`REFERENCE_KEYS` are treated as object ids.
"""
import json
import re
from typing import Any, Iterable

from local_data_prune.logger import get_logger

logger = get_logger(__name__)

BLOCK_MARKER = "<!-- wp:"

_BLOCK_PATTERN = re.compile(
    r"<!--\s+wp:(?P<name>[a-z][a-z0-9_-]*(?:/[a-z][a-z0-9_-]*)?)\s+(?P<attrs>\{.*?\})\s+/?-->",
    re.DOTALL,
)

REFERENCE_KEYS = frozenset({
    "id",
    "ids",
    "mediaId",
    "postId",
    "attachmentId",
    "ref",
})


def has_blocks(content: str) -> bool:
    """Cheap check before running the block parser."""
    return BLOCK_MARKER in content


def _collect(value: Any, found: set[int]) -> None:
    if isinstance(value, bool):
        return
    if isinstance(value, int):
        if value > 0:
            found.add(value)
    elif isinstance(value, str) and value.isdigit():
        if int(value) > 0:
            found.add(int(value))
    elif isinstance(value, list):
        for item in value:
            _collect(item, found)


def extract_block_ids(content: str) -> set[int]:
    """Return every object id referenced by block attributes in *content*."""
    if not has_blocks(content):
        return set()

    found: set[int] = set()
    for match in _BLOCK_PATTERN.finditer(content):
        try:
            attrs = json.loads(match.group("attrs"))
        except json.JSONDecodeError:
            logger.debug("Unparseable attributes on block %s", match.group("name"))
            continue
        if not isinstance(attrs, dict):
            continue
        for key in REFERENCE_KEYS.intersection(attrs):
            _collect(attrs[key], found)
    return found


def extract_many(contents: Iterable[str]) -> set[int]:
    """Union of :func:`extract_block_ids` over several contents."""
    found: set[int] = set()
    for content in contents:
        found |= extract_block_ids(content)
    return found
