"""Description templates rendered against real transaction fields."""

from collections.abc import Mapping
from typing import Any, Union
import logging
import re
import threading

from jinja2 import StrictUndefined, Template, TemplateError
from jinja2.sandbox import SandboxedEnvironment

from .models.real_transaction import RealTransaction
from .utils.exceptions import TemplateRenderError

logger = logging.getLogger(__name__)

# Rules written for handlebars use {{{field}}} to skip escaping
TRIPLE_BRACES = re.compile(r"\{\{\{\s*(.+?)\s*\}\}\}")


class Templater:
    """Renders user supplied templates in a sandbox, caching compiled ones."""

    def __init__(self) -> None:
        self._env = SandboxedEnvironment(undefined=StrictUndefined, autoescape=False)
        self._compiled: dict[str, Template] = {}
        self._lock = threading.Lock()

    def render(
        self, template: str, data: Union[RealTransaction, Mapping[str, Any]]
    ) -> str:
        """
        Render a template.

        Args:
            template: Template source, e.g. ``"Buy from {{partner}}"``
            data: Real transaction or plain field map

        Returns:
            Rendered string

        Raises:
            TemplateRenderError: On syntax errors or references to missing fields
        """
        fields = data.fields() if isinstance(data, RealTransaction) else dict(data)
        try:
            return self._compile(template).render(fields)
        except TemplateError as e:
            logger.debug(f"Failed to render template {template!r}: {e}")
            raise TemplateRenderError(f"Failed to render {template!r}: {e}") from e

    def _compile(self, template: str) -> Template:
        with self._lock:
            compiled = self._compiled.get(template)
            if compiled is None:
                source = TRIPLE_BRACES.sub(r"{{ \1 }}", template)
                compiled = self._env.from_string(source)
                self._compiled[template] = compiled
            return compiled
