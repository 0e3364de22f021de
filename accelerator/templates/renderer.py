"""Template renderer: load template bytes and substitute the fixed token set.

Tokens are written ``{{ name }}``. Only the names in
:data:`accelerator.models.options.TOKEN_NAMES` are substituted; anything else
in braces is left exactly as written, so templates added later with their own
brace syntax never fail to render.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import PurePosixPath
from typing import Callable

from accelerator.exceptions import EntryIOError, TemplateMissing
from accelerator.models.options import TOKEN_NAMES, RenderContext
from accelerator.utils.fs import TargetFileSystem

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(rb"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")

TEMPLATES_PREFIX = "templates"


class TemplateRenderer:
    """Renders templates stored under ``templates/`` in a template source."""

    def __init__(self, source: TargetFileSystem):
        self.source = source

    def load(self, ref: str) -> bytes:
        """Return the raw template bytes.

        Raises:
            TemplateMissing: If ``ref`` does not exist or points outside the
                template tree.
        """
        path = f"{TEMPLATES_PREFIX}/{ref.lstrip('/')}"
        try:
            data = self.source.read_bytes(path)
        except EntryIOError as e:
            raise TemplateMissing(ref, context={"template": ref, "reason": str(e)}) from e
        if data is None:
            raise TemplateMissing(ref, context={"template": ref})
        return data

    def render(self, ref: str, context: RenderContext) -> bytes:
        escape = _ESCAPERS.get(PurePosixPath(ref).suffix.lower())
        return substitute(self.load(ref), context.tokens(), escape)


def substitute(data: bytes, tokens: dict[str, str], escape: Callable[[str], str] | None = None) -> bytes:
    """Replace known ``{{ token }}`` occurrences in ``data``.

    ``escape``, when given, is applied to each value before it is inserted.
    """

    def _replace(match: re.Match) -> bytes:
        name = match.group(1).decode("ascii")
        if name not in TOKEN_NAMES or name not in tokens:
            return match.group(0)
        value = tokens[name]
        if escape is not None:
            value = escape(value)
        return value.encode("utf-8")

    return _TOKEN_RE.sub(_replace, data)


def quoted_string_escape(value: str) -> str:
    """Escape ``value`` for use inside a double-quoted JSON or YAML string."""
    return json.dumps(value, ensure_ascii=False)[1:-1]


# Template suffix -> escaping for token values. JSON and YAML templates put
# tokens inside double-quoted strings; other formats take values as-is.
_ESCAPERS = {
    ".json": quoted_string_escape,
    ".yaml": quoted_string_escape,
    ".yml": quoted_string_escape,
}
