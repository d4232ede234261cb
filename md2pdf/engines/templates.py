"""Full HTML document wrapper used by the browser-based engines."""

from __future__ import annotations

from jinja2 import Environment, select_autoescape

from md2pdf.engines.models import GenerationContext

BASE_CSS = """
body {
    font-family: -apple-system, "Segoe UI", Roboto, Arial, sans-serif;
    font-size: 11pt;
    line-height: 1.6;
    color: #333;
}
h1, h2, h3, h4, h5, h6 { color: #222; margin-top: 1em; margin-bottom: 0.5em; line-height: 1.25; }
h1 { font-size: 1.9em; border-bottom: 1px solid #e6e6e6; padding-bottom: 0.2em; }
h2 { font-size: 1.5em; }
h3 { font-size: 1.2em; }
pre, code { font-family: Consolas, "Liberation Mono", Menlo, monospace; background: #f5f5f5; border-radius: 3px; }
code { padding: 0.2em 0.4em; }
pre { padding: 1em; overflow-x: auto; }
table { border-collapse: collapse; width: 100%; margin: 1em 0; }
th, td { border: 1px solid #ddd; padding: 0.5em 0.6em; vertical-align: top; }
th { background: #f8fafc; text-align: left; }
img { max-width: 100%; }
blockquote { border-left: 3px solid #ddd; margin: 0.8em 0; padding: 0.1em 1em; color: #555; }
"""

CJK_CSS = """
* { font-family: "Noto Sans CJK SC", "Noto Sans CJK TC", "Microsoft YaHei", "PingFang SC", Arial, sans-serif !important; }
"""

_DOCUMENT_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>{{ title }}</title>
  <style>
{{ base_css | safe }}
{% if chinese %}{{ cjk_css | safe }}{% endif %}
{% if custom_css %}{{ custom_css | safe }}{% endif %}
  </style>
</head>
<body>
{{ body | safe }}
</body>
</html>
"""

_env = Environment(autoescape=select_autoescape(default_for_string=True))
_template = _env.from_string(_DOCUMENT_TEMPLATE)


def render_full_html(context: GenerationContext) -> str:
    """Wrap ``context.html_content`` in a complete, styled HTML document.

    The body and CSS are trusted input from the Markdown stage and are
    inserted verbatim; only the title is escaped.
    """
    return _template.render(
        title=context.title or "Document",
        base_css=BASE_CSS,
        cjk_css=CJK_CSS,
        chinese=context.enable_chinese_support,
        custom_css=context.custom_css or "",
        body=context.html_content,
    )
