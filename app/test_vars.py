import importlib

import pytest

import app.vars as vars_module


@pytest.fixture
def reload_vars(monkeypatch):
    """Reload app.vars under a patched environment and restore it afterwards."""

    def _reload(**env):
        for key, value in env.items():
            monkeypatch.setenv(key, value)
        return importlib.reload(vars_module)

    yield _reload
    monkeypatch.undo()
    importlib.reload(vars_module)


def test_defaults(reload_vars):
    module = reload_vars()
    assert module.ROUTE_PREFIX == "/browse/"
    assert module.PROXY_TIMEOUT == 30.0
    assert module.TUNNEL_PATH == "/wisp"
    assert module.REWRITE_HTML is True
    assert module.INJECT_NAV_SHIM is True


@pytest.mark.parametrize("raw", ["browse", "/browse", "browse/", " /browse/ "])
def test_route_prefix_normalized(reload_vars, raw):
    assert reload_vars(ROUTE_PREFIX=raw).ROUTE_PREFIX == "/browse/"


def test_nested_route_prefix(reload_vars):
    assert reload_vars(ROUTE_PREFIX="/p/web").ROUTE_PREFIX == "/p/web/"


def test_root_route_prefix_rejected():
    with pytest.raises(ValueError):
        vars_module._normalize_route_prefix("/")


def test_switches_and_numbers(reload_vars):
    module = reload_vars(
        REWRITE_HTML="False",
        INJECT_NAV_SHIM="no",
        PROXY_TIMEOUT="2.5",
        TUNNEL_PATH="/tunnel/",
    )
    assert module.REWRITE_HTML is False
    assert module.INJECT_NAV_SHIM is False
    assert module.PROXY_TIMEOUT == 2.5
    assert module.TUNNEL_PATH == "/tunnel"
