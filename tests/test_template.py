#!/usr/bin/env python3
"""Tests for template.py - Jinja2 rendering of manifest assets."""

import sys
from dataclasses import dataclass
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

import pytest
import yaml
from applier.asset import MemFS
from applier.common import RenderError
from applier.template import TemplateRenderer, build_context, default_func_map


@dataclass
class DeploymentValues:
    Name: str
    Replicas: int = 1


class Settings:
    def __init__(self):
        self.Name = 'from-object'
        self._hidden = 'x'

    def method(self):
        return 'not exposed'


class TestBuildContext:
    """Test value context conversion."""

    def test_mapping(self):
        """Mapping keys become top-level names."""
        ctx = build_context({'Name': 'a'})
        assert ctx['Name'] == 'a'
        assert ctx['Values'] == {'Name': 'a'}

    def test_dataclass(self):
        """Dataclass fields become top-level names."""
        ctx = build_context(DeploymentValues(Name='web'))
        assert ctx['Name'] == 'web'
        assert ctx['Replicas'] == 1

    def test_object_public_attributes(self):
        """Plain objects expose public non-callable attributes."""
        ctx = build_context(Settings())
        assert ctx['Name'] == 'from-object'
        assert '_hidden' not in ctx
        assert 'method' not in ctx

    def test_none(self):
        """None yields an empty namespace (plus Values)."""
        assert build_context(None) == {'Values': None}


class TestTemplateRenderer:
    """Test TemplateRenderer.render()."""

    def test_renders_values(self):
        """Values are substituted."""
        fs = MemFS({'cm.yaml': 'name: {{ Name }}\n'})
        assert TemplateRenderer(fs).render('cm.yaml', {'Name': 'my-ns'}) == b'name: my-ns\n'

    def test_values_namespace(self):
        """The whole context is available as Values."""
        fs = MemFS({'cm.yaml': 'name: {{ Values.Name }}'})
        assert TemplateRenderer(fs).render('cm.yaml', {'Name': 'x'}) == b'name: x'

    def test_dataclass_values(self):
        """Dataclass value contexts render."""
        fs = MemFS({'d.yaml': 'replicas: {{ Replicas }}'})
        out = TemplateRenderer(fs).render('d.yaml', DeploymentValues(Name='w', Replicas=3))
        assert out == b'replicas: 3'

    def test_plain_asset_without_values(self):
        """Assets without template syntax render unchanged."""
        fs = MemFS({'file1': b'file1content'})
        assert TemplateRenderer(fs).render('file1') == b'file1content'

    def test_missing_value_raises(self):
        """Undefined variable is an error, not an empty string."""
        fs = MemFS({'cm.yaml': 'name: {{ Name }}'})
        with pytest.raises(RenderError) as exc_info:
            TemplateRenderer(fs).render('cm.yaml', {})
        assert exc_info.value.code == 'E200'
        assert exc_info.value.asset == 'cm.yaml'
        assert 'Name' in str(exc_info.value)

    def test_missing_function_raises(self):
        """Call to an unknown function is an error."""
        fs = MemFS({'cm.yaml': 'data: {{ toToml(x) }}'})
        with pytest.raises(RenderError):
            TemplateRenderer(fs).render('cm.yaml', {'x': 1})

    def test_syntax_error_raises(self):
        """Template syntax errors surface as RenderError."""
        fs = MemFS({'cm.yaml': 'name: {{ Name '})
        with pytest.raises(RenderError):
            TemplateRenderer(fs).render('cm.yaml', {'Name': 'x'})

    def test_missing_asset_raises(self):
        """Unknown asset surfaces as RenderError."""
        with pytest.raises(RenderError):
            TemplateRenderer(MemFS({})).render('nope.yaml')

    def test_custom_func_map(self):
        """Caller-supplied functions replace the built-in table."""
        fs = MemFS({'cm.yaml': 'name: {{ shout(Name) }}'})
        renderer = TemplateRenderer(fs, {'shout': lambda s: s.upper()})
        assert renderer.render('cm.yaml', {'Name': 'abc'}) == b'name: ABC'

    def test_custom_func_map_excludes_defaults(self):
        """An explicit function table does not include built-ins."""
        fs = MemFS({'cm.yaml': '{{ toJson(x) }}'})
        with pytest.raises(RenderError):
            TemplateRenderer(fs, {}).render('cm.yaml', {'x': 1})

    def test_header_prepended(self):
        """Header definitions are visible to the asset."""
        fs = MemFS({
            'header.tpl': '{%- macro app() -%}demo{%- endmacro -%}',
            'cm.yaml': 'app: {{ app() }}\n',
        })
        assert TemplateRenderer(fs).render('cm.yaml', header='header.tpl') == b'app: demo\n'

    def test_include_resolves_through_reader(self):
        """Includes are loaded from the same asset source."""
        fs = MemFS({
            'labels.tpl': 'app: demo',
            'cm.yaml': 'labels:\n  {% include "labels.tpl" %}\n',
        })
        out = yaml.safe_load(TemplateRenderer(fs).render('cm.yaml'))
        assert out == {'labels': {'app': 'demo'}}


class TestDefaultFuncMap:
    """Test the built-in template functions."""

    def render(self, source, values=None):
        return TemplateRenderer(MemFS({'t': source})).render('t', values).decode('utf-8')

    def test_contains_expected_functions(self):
        """Built-in table names."""
        assert set(default_func_map()) == {
            'toYaml', 'toJson', 'b64enc', 'b64dec', 'required', 'quote'}

    def test_to_yaml_filter(self):
        """toYaml works as a filter."""
        out = self.render('{{ labels | toYaml }}', {'labels': {'app': 'web'}})
        assert out == 'app: web'

    def test_to_json_function(self):
        """toJson works as a function."""
        assert self.render('{{ toJson(x) }}', {'x': {'b': 1, 'a': 2}}) == '{"a": 2, "b": 1}'

    def test_b64_round_trip(self):
        """b64enc / b64dec invert each other."""
        assert self.render('{{ "secret" | b64enc }}') == 'c2VjcmV0'
        assert self.render('{{ "c2VjcmV0" | b64dec }}') == 'secret'

    def test_b64dec_invalid_raises(self):
        """Invalid base64 input is a render error."""
        with pytest.raises(RenderError):
            self.render('{{ "abc" | b64dec }}')

    def test_quote(self):
        """quote produces a double-quoted scalar."""
        assert self.render('{{ x | quote }}', {'x': 'a"b'}) == '"a\\"b"'

    def test_required_passes_value(self):
        """required returns a present value."""
        assert self.render('{{ required(x) }}', {'x': 'ok'}) == 'ok'

    def test_required_missing_raises(self):
        """required fails on a missing value with its message."""
        with pytest.raises(RenderError) as exc_info:
            self.render('{{ required(x, "x is mandatory") }}', {})
        assert 'x is mandatory' in str(exc_info.value)

    def test_required_empty_raises(self):
        """required fails on an empty string."""
        with pytest.raises(RenderError):
            self.render('{{ required(x) }}', {'x': ''})
