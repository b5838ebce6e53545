"""
Compose file writer for webtop containers.

Renders a docker-compose file from a container description so it can be
brought up with `docker compose up -d` on the target host.
"""
import logging
from pathlib import Path

from jinja2 import Environment, PackageLoader, StrictUndefined

from .models import Container

logger = logging.getLogger(__name__)

WEBTOP_TEMPLATE = 'webtop-compose.yml.j2'

_env = Environment(
    loader=PackageLoader('theseus', 'templates'),
    undefined=StrictUndefined,
    autoescape=False,
)


def render_compose(container: Container, template_name: str = WEBTOP_TEMPLATE) -> str:
    return _env.get_template(template_name).render(container=container) + "\n"


def write_compose_file(
    container: Container,
    output_path: str = 'docker-compose.yml',
    template_name: str = WEBTOP_TEMPLATE
) -> Path:
    """Render the compose file for `container` and write it to `output_path`."""
    path = Path(output_path)
    path.write_text(render_compose(container, template_name))
    logger.info(f"{path} created for container '{container.id}'")
    return path
