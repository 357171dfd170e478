"""
Client-side navigation shim injected into every rewritten page.

The shim repeats the classification and wrapping rules of
``canonicalizer.canonicalize`` in the browser, so URLs built at runtime
(history updates, script redirects, ``window.open``, programmatic fetches)
stay under the route prefix after the page has loaded.
"""

import json
from string import Template

from app.browse.canonicalizer import SKIP_SCHEMES

SHIM_MARKER = "data-browse-nav-shim"

_WRAP_RULES = Template(
    """  var ORIGIN = $origin;
  var PREFIX = $prefix;
  var SKIP = $skip;

  function encOnce(u) {
    var decoded;
    try { decoded = decodeURIComponent(u); } catch (err) { decoded = u; }
    return encodeURIComponent(decoded);
  }

  function shouldSkip(u) {
    if (!u) return true;
    var lower = String(u).toLowerCase();
    for (var i = 0; i < SKIP.length; i++) {
      if (lower.indexOf(SKIP[i]) === 0) return true;
    }
    return false;
  }

  function wrap(u) {
    if (u === undefined || u === null) return u;
    var s = String(u);
    if (shouldSkip(s)) return u;
    if (s.indexOf(PREFIX) === 0) return s;
    if (/^[a-z][a-z0-9+.\\-]*:\\/\\//i.test(s)) return PREFIX + encOnce(s);
    if (/^\\/\\//.test(s)) return PREFIX + encOnce("https:" + s);
    if (/^\\//.test(s)) return PREFIX + encOnce(ORIGIN + s);
    return PREFIX + encOnce(ORIGIN + "/" + s);
  }
"""
)

_SHIM_TEMPLATE = Template(
    """<script $marker>
(function(){
  if (window.__browseNavShim) return;
  window.__browseNavShim = true;

$rules
  function guard(install) {
    try { install(); } catch (err) { /* primitive not overridable here */ }
  }

  var L = window.location;
  var nativeAssign = L.assign.bind(L);
  var nativeReplace = L.replace.bind(L);
  var nativeOpen = window.open;

  document.addEventListener("click", function(e) {
    var el = e.target && e.target.closest ? e.target.closest("a[href]") : null;
    if (!el) return;
    var href = el.getAttribute("href");
    var proxied = wrap(href);
    if (!proxied || proxied === href) return;
    e.preventDefault();
    var target = el.getAttribute("target");
    if (target && target !== "_self") {
      nativeOpen.call(window, proxied, target);
    } else {
      nativeAssign(proxied);
    }
  }, true);

  document.addEventListener("submit", function(e) {
    var form = e.target;
    if (!form || !form.getAttribute) return;
    var method = (form.getAttribute("method") || "GET").toUpperCase();
    if (method !== "GET") return;
    var action = form.getAttribute("action") || "";
    var proxied = wrap(action || ORIGIN);
    if (!proxied || proxied === action) return;
    e.preventDefault();
    var query = "";
    guard(function() { query = new URLSearchParams(new FormData(form)).toString(); });
    nativeAssign(query ? proxied + (proxied.indexOf("?") === -1 ? "?" : "&") + query : proxied);
  }, true);

  guard(function() {
    var push = history.pushState, replace = history.replaceState;
    history.pushState = function(state, title, url) {
      return push.call(this, state, title, wrap(url));
    };
    history.replaceState = function(state, title, url) {
      return replace.call(this, state, title, wrap(url));
    };
  });

  guard(function() {
    Object.defineProperty(window, "location", {
      configurable: true,
      get: function() { return L; },
      set: function(u) { nativeAssign(wrap(u)); }
    });
  });
  guard(function() { L.assign = function(u) { return nativeAssign(wrap(u)); }; });
  guard(function() { L.replace = function(u) { return nativeReplace(wrap(u)); }; });

  guard(function() {
    window.open = function(u, name, features) {
      return nativeOpen.call(window, wrap(u), name, features);
    };
  });

  guard(function() {
    var nativeFetch = window.fetch;
    if (!nativeFetch) return;
    window.fetch = function(input, init) {
      return nativeFetch.call(this, typeof input === "string" ? wrap(input) : input, init);
    };
  });

  guard(function() {
    var xhrOpen = XMLHttpRequest.prototype.open;
    XMLHttpRequest.prototype.open = function(method, url) {
      var args = Array.prototype.slice.call(arguments);
      args[1] = wrap(url);
      return xhrOpen.apply(this, args);
    };
  });
})();
</script>"""
)


def _js_literal(value) -> str:
    # "</script>" inside a string literal would end the element early
    return json.dumps(value).replace("<", "\\u003c")


def wrap_rules(origin: str, route_prefix: str) -> str:
    """
    Return the JavaScript declarations of ``wrap()`` and its helpers, the
    browser-side counterpart of ``canonicalize``.
    """
    return _WRAP_RULES.substitute(
        origin=_js_literal(origin),
        prefix=_js_literal(route_prefix),
        skip=_js_literal(list(SKIP_SCHEMES)),
    )


def generate(origin: str, route_prefix: str) -> str:
    """Return the self-executing shim script for one proxied document."""
    return _SHIM_TEMPLATE.substitute(
        marker=SHIM_MARKER,
        rules=wrap_rules(origin, route_prefix),
    )
