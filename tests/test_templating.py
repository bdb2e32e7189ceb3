import jinja2
import pytest

from dockhand_automation.templating import TemplateRenderer, looks_like_jinja


def test_plain_strings_pass_through():
    renderer = TemplateRenderer()
    assert renderer.render_value("/etc/motd", {}) == "/etc/motd"
    assert looks_like_jinja("{{ x }}") is True
    assert looks_like_jinja("${HOME}") is False


def test_single_expression_keeps_native_type():
    renderer = TemplateRenderer()
    variables = {"docker_packages": ["docker-ce", "containerd.io"], "port": 2375}
    assert renderer.render_value("{{ docker_packages }}", variables) == ["docker-ce", "containerd.io"]
    assert renderer.render_value(" {{ port }} ", variables) == 2375


def test_nested_values_are_rendered():
    renderer = TemplateRenderer()
    data = {
        "path": "/etc/sudoers.d/{{ user }}",
        "groups": ["{{ group }}", "sudo"],
        "mode": 0o440,
    }
    rendered = renderer.render_value(data, {"user": "ansible", "group": "docker"})
    assert rendered == {"path": "/etc/sudoers.d/ansible", "groups": ["docker", "sudo"], "mode": 0o440}


def test_undefined_variables_raise():
    renderer = TemplateRenderer()
    with pytest.raises(jinja2.UndefinedError):
        renderer.render_value("{{ missing }}", {})
    with pytest.raises(jinja2.UndefinedError):
        renderer.render_value("deb {{ missing }} stable", {})


def test_render_text_keeps_trailing_newline():
    renderer = TemplateRenderer()
    assert renderer.render_text("{{ user }} ALL=(ALL) NOPASSWD:ALL\n", {"user": "ansible"}) == (
        "ansible ALL=(ALL) NOPASSWD:ALL\n"
    )
