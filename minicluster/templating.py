"""Jinja2 rendering of the package's manifest and config templates."""

from pathlib import Path

from jinja2 import Environment, FileSystemLoader, StrictUndefined

TEMPLATES_DIR = Path(__file__).parent / "templates"

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=False,
    undefined=StrictUndefined,
    keep_trailing_newline=True,
)


def render(template_name: str, **context) -> str:
    """Render a template shipped in minicluster/templates."""
    return _env.get_template(template_name).render(**context)
