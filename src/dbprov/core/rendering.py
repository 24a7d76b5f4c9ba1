"""Jinja2 environment for the bundled templates."""

from jinja2 import Environment, PackageLoader, StrictUndefined, select_autoescape


def get_jinja_env() -> Environment:
    """Get Jinja2 environment for templates."""
    return Environment(
        loader=PackageLoader("dbprov", "templates"),
        autoescape=select_autoescape(),
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
        undefined=StrictUndefined,
    )


def render(template_name: str, **context) -> str:
    """Render one bundled template."""
    return get_jinja_env().get_template(template_name).render(**context)
