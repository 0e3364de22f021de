"""Tests for the template renderer and filesystem abstraction."""

import json
import os
import tempfile
from pathlib import Path

import pytest
import yaml

from accelerator.exceptions import EntryIOError, TemplateMissing
from accelerator.manifest.catalog import default_source_root
from accelerator.models.options import resolve_context
from accelerator.templates.renderer import TemplateRenderer, substitute
from accelerator.utils.fs import LocalFileSystem, MemoryFileSystem, atomic_write


# --- Renderer Tests ---


def test_render_substitutes_known_tokens():
    source = MemoryFileSystem({"templates/a.md": "Stack: {{ frontend }} + {{database}} for {{ project_name }}"})
    context = resolve_context("angular", "postgres", tokens={"project_name": "shop"})
    assert TemplateRenderer(source).render("a.md", context) == b"Stack: angular + postgres for shop"


def test_render_leaves_unknown_tokens_verbatim():
    source = MemoryFileSystem({"templates/a.md": "{{ unknown_token }} and {{ frontend }} and ${{ matrix.os }}"})
    rendered = TemplateRenderer(source).render("a.md", resolve_context("react"))
    assert rendered == b"{{ unknown_token }} and react and ${{ matrix.os }}"


def test_render_missing_template():
    with pytest.raises(TemplateMissing) as exc:
        TemplateRenderer(MemoryFileSystem()).render("nope.md", resolve_context())
    assert exc.value.ref == "nope.md"


def test_render_rejects_template_outside_root():
    with tempfile.TemporaryDirectory() as tmpdir:
        renderer = TemplateRenderer(LocalFileSystem(tmpdir))
        with pytest.raises(TemplateMissing):
            renderer.render("../../etc/passwd", resolve_context())


def test_substitute_is_pure():
    data = b"{{ agents }}"
    assert substitute(data, {"agents": "claude"}) == b"claude"
    assert data == b"{{ agents }}"


def test_render_escapes_tokens_in_json_and_yaml():
    source = MemoryFileSystem({
        "templates/settings.json": '{"name": "{{ project_name }}"}',
        "templates/stack.yaml": 'project: "{{ project_name }}"\n',
        "templates/readme.md": "# {{ project_name }}\n",
    })
    context = resolve_context(tokens={"project_name": 'say "hi" \\ bye'})
    renderer = TemplateRenderer(source)

    assert json.loads(renderer.render("settings.json", context)) == {"name": 'say "hi" \\ bye'}
    assert yaml.safe_load(renderer.render("stack.yaml", context)) == {"project": 'say "hi" \\ bye'}
    assert renderer.render("readme.md", context) == b'# say "hi" \\ bye\n'


def test_bundled_templates_render_with_awkward_project_name():
    root = default_source_root()
    renderer = TemplateRenderer(LocalFileSystem(root))
    context = resolve_context("react", "postgres", ["all"], tokens={"project_name": 'a"b\\c'})

    settings = json.loads(renderer.render("vscode/settings.json", context))
    assert settings["accelerator.frontend"] == "react"
    assert yaml.safe_load(renderer.render("stack.yaml", context))["project"] == 'a"b\\c'


# --- Filesystem Tests ---


def test_local_filesystem_round_trip():
    with tempfile.TemporaryDirectory() as tmpdir:
        fs = LocalFileSystem(tmpdir)
        assert fs.read_bytes("a/b/c.txt") is None
        fs.write_bytes("a/b/c.txt", b"data")
        assert fs.read_bytes("a/b/c.txt") == b"data"
        assert fs.exists("a/b/c.txt")


def test_local_filesystem_rejects_escaping_paths():
    with tempfile.TemporaryDirectory() as tmpdir:
        with pytest.raises(EntryIOError):
            LocalFileSystem(tmpdir).write_bytes("../escape.txt", b"x")


def test_atomic_write_failure_leaves_previous_content(monkeypatch):
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "settings.json"
        path.write_bytes(b"before")

        def _crash(src, dst):
            raise OSError("simulated crash during rename")

        monkeypatch.setattr(os, "replace", _crash)
        with pytest.raises(OSError):
            atomic_write(path, b"after" * 1000)
        monkeypatch.undo()

        assert path.read_bytes() == b"before"
        assert [p.name for p in Path(tmpdir).iterdir()] == ["settings.json"]


def test_atomic_write_preserves_file_mode():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "run.sh"
        path.write_bytes(b"#!/bin/sh\n")
        path.chmod(0o755)
        atomic_write(path, b"#!/bin/sh\necho hi\n")
        assert path.stat().st_mode & 0o777 == 0o755
