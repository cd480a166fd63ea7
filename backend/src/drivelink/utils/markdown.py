"""Markdown helpers for bot messages."""

# Characters with meaning in chat markdown, replaced by HTML entities so
# user-supplied excerpts render literally
_MARKDOWN_ENTITIES = {
    "&": "&amp;",
    "\\": "&#92;",
    "`": "&#96;",
    "*": "&#42;",
    "_": "&#95;",
    "~": "&#126;",
    "#": "&#35;",
    "[": "&#91;",
    "]": "&#93;",
    "(": "&#40;",
    ")": "&#41;",
    "<": "&lt;",
    ">": "&gt;",
    "|": "&#124;",
    "!": "&#33;",
}


def escape_markdown(text: str) -> str:
    """Neutralize markdown formatting in ``text``."""
    return "".join(_MARKDOWN_ENTITIES.get(ch, ch) for ch in text)


def quote(text: str) -> str:
    """Render ``text`` as a block quote, one ``> `` per line."""
    return "\n".join(f"> {line}" for line in text.splitlines() or [""])


def inline_image(alt_text: str, url: str) -> str:
    return f"![{alt_text}]({url})"


def hyperlink(text: str, url: str) -> str:
    return f"[{text}]({url})"
