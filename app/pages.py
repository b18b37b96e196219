"""Minimal HTML pages for browser-facing responses (file downloads)."""

from __future__ import annotations

from jinja2 import Environment, StrictUndefined, select_autoescape


_PAGE = """<!DOCTYPE html>
<html lang="{{ lang }}">
<head>
<meta charset="utf-8">
<title>{{ status }} {{ title }}</title>
</head>
<body>
<h1>{{ status }} {{ title }}</h1>
<p>{{ message }}</p>
</body>
</html>
"""

_TITLES = {
    400: "Bad Request",
    404: "Not Found",
    500: "Internal Server Error",
}

_env = Environment(autoescape=select_autoescape(default_for_string=True), undefined=StrictUndefined)
_template = _env.from_string(_PAGE)


def render_message_page(status: int, message: str, lang: str = "en") -> str:
    return _template.render(status=status, title=_TITLES.get(status, "Error"), message=message, lang=lang)
