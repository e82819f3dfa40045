"""
Content Normalizer
==================
Normalises every model-emitted file body before it is written.

Steps (in order):
    1. Strip a leading UTF-8 BOM
    2. Strip a surrounding ``` fence with an optional language tag
    3. Convert CRLF → LF
    4. Ensure exactly one trailing LF

An empty body stays empty. Normalising an already-normalised body is a no-op.
"""
import re

_BOM = "\ufeff"
_FENCE_RE = re.compile(r"^```[\w.+-]*[ \t]*\r?\n(.*?)(?:\r?\n)?```[ \t]*(?:\r?\n)*$", re.DOTALL)


def strip_bom(content: str) -> str:
    return content[1:] if content.startswith(_BOM) else content


def strip_code_fence(content: str) -> str:
    """Remove a fence only when it wraps the whole body."""
    match = _FENCE_RE.match(content.strip(" \t"))
    if match:
        return match.group(1)
    return content


def normalize_generated_content(content: str) -> str:
    """
    Normalise a generated file body.

    Parameters
    ----------
    content : str
        Raw body as emitted by the model.

    Returns
    -------
    str
        Normalised body ("" stays "").
    """
    body = strip_code_fence(strip_bom(content))
    body = body.replace("\r\n", "\n")
    if not body.strip("\n"):
        return ""
    return body.rstrip("\n") + "\n"
