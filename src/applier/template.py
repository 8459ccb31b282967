"""Template rendering for manifest assets.

Assets are Jinja2 templates resolved through an AssetReader. The value
context is exposed at the top level (``{{ Name }}``) and as ``Values``; the
function table is exposed both as callables (``{{ toYaml(labels) }}``) and
as filters (``{{ labels | toYaml }}``).

Rendering is strict: an undefined variable or function is an error, never
an empty string.
"""

import base64
import dataclasses
import json
import logging
from collections.abc import Mapping
from typing import Any, Callable, Optional

import jinja2
import yaml

from applier.asset import AssetReader
from applier.common import AssetNotFoundError, RenderError

logger = logging.getLogger(__name__)

FuncMap = dict[str, Callable[..., Any]]


def _to_yaml(value: Any) -> str:
    return yaml.safe_dump(value, default_flow_style=False, sort_keys=False).rstrip('\n')


def _to_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True)


def _b64enc(value: Any) -> str:
    data = value if isinstance(value, bytes) else str(value).encode('utf-8')
    return base64.b64encode(data).decode('ascii')


def _b64dec(value: str) -> str:
    return base64.b64decode(value).decode('utf-8')


def _required(value: Any, message: str = 'required value is missing') -> Any:
    if isinstance(value, jinja2.Undefined) or value is None or value == '':
        raise jinja2.TemplateRuntimeError(message)
    return value


def _quote(value: Any) -> str:
    return json.dumps(str(value))


def default_func_map() -> FuncMap:
    """Return the built-in template function table."""
    return {
        'toYaml': _to_yaml,
        'toJson': _to_json,
        'b64enc': _b64enc,
        'b64dec': _b64dec,
        'required': _required,
        'quote': _quote,
    }


class AssetLoader(jinja2.BaseLoader):
    """Jinja2 loader resolving includes through an AssetReader."""

    def __init__(self, reader: AssetReader):
        self.reader = reader

    def get_source(self, environment, template):
        try:
            source = self.reader.asset(template).decode('utf-8')
        except AssetNotFoundError:
            raise jinja2.TemplateNotFound(template) from None
        return source, None, lambda: True


def build_context(values: Any) -> dict:
    """Turn a value context into a template namespace.

    Mappings are used as-is, dataclasses are converted with asdict, other
    objects expose their public attributes. The original value is always
    available as ``Values``.
    """
    if values is None:
        namespace: dict = {}
    elif isinstance(values, Mapping):
        namespace = dict(values)
    elif dataclasses.is_dataclass(values) and not isinstance(values, type):
        namespace = dataclasses.asdict(values)
    else:
        namespace = {
            key: getattr(values, key)
            for key in dir(values)
            if not key.startswith('_') and not callable(getattr(values, key))
        }
    namespace.setdefault('Values', values)
    return namespace


class TemplateRenderer:
    """Renders named assets into raw manifest bytes.

    Attributes:
        reader: Asset source for templates and includes
        func_map: Functions available inside templates
    """

    def __init__(self, reader: AssetReader, func_map: Optional[FuncMap] = None):
        self.reader = reader
        self.func_map: FuncMap = dict(func_map) if func_map is not None else default_func_map()
        self._env = jinja2.Environment(
            loader=AssetLoader(reader),
            undefined=jinja2.StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False,
        )
        self._env.globals.update(self.func_map)
        self._env.filters.update(self.func_map)

    def _source(self, name: str, header: Optional[str]) -> str:
        try:
            source = self.reader.asset(name).decode('utf-8')
            if header:
                prefix = self.reader.asset(header).decode('utf-8').rstrip('\n')
                if prefix:
                    source = prefix + '\n' + source
        except (AssetNotFoundError, UnicodeDecodeError) as e:
            raise RenderError(name, str(e)) from e
        return source

    def render(self, name: str, values: Any = None, header: Optional[str] = None) -> bytes:
        """Render one asset.

        Args:
            name: Asset name
            values: Value context (mapping, dataclass or object)
            header: Optional asset prepended before rendering

        Returns:
            Rendered content as UTF-8 bytes

        Raises:
            RenderError: On syntax errors, undefined names or missing assets
        """
        source = self._source(name, header)
        try:
            rendered = self._env.from_string(source).render(build_context(values))
        except jinja2.TemplateError as e:
            raise RenderError(name, str(e) or type(e).__name__) from e
        except (TypeError, ValueError) as e:
            raise RenderError(name, f"template function failed: {e}") from e
        logger.debug(f"Rendered {name} ({len(rendered)} chars)")
        return rendered.encode('utf-8')
