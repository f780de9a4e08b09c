"""
Client-side environment spoofing.

The injected script makes page code see the target's location values
instead of the proxy's, and routes runtime navigation (``location.assign``,
``location.replace``, ``history.pushState``, ``history.replaceState``)
back through the proxy. Cookies are already host-only on the proxy origin,
so ``document.cookie`` is only delegated to the browser's own accessor.
"""

import json
import re
from string import Template

from rewriting_proxy.proxy.url_codec import PROXY_PATH_PREFIX, TargetDescriptor

_HEAD_CLOSE = re.compile(r"</head>", re.IGNORECASE)

# Each override sits in its own try block: browsers refuse some of them
# (e.g. non-configurable Location members) and one refusal must not stop
# the rest.
SPOOF_SCRIPT = Template(
    """
<script>
(function(){
  var TARGET_URL = $target_url;
  var TARGET_HOST = $target_host;
  var TARGET_HOSTNAME = $target_hostname;
  var TARGET_ORIGIN = $target_origin;
  var TARGET_PROTOCOL = $target_protocol;
  var PROXY_ORIGIN = $proxy_origin;
  var PROXY_PREFIX = $proxy_prefix;

  function proxyPath(url) {
    return PROXY_PREFIX + encodeURIComponent(new URL(url, TARGET_URL).toString());
  }

  function override(obj, name, descriptor) {
    try { Object.defineProperty(obj, name, descriptor); } catch (e) {}
  }

  override(window.location, 'hostname', { get: function() { return TARGET_HOSTNAME; } });
  override(window.location, 'host', { get: function() { return TARGET_HOST; } });
  override(window.location, 'origin', { get: function() { return TARGET_ORIGIN; } });
  override(window.location, 'protocol', { get: function() { return TARGET_PROTOCOL; } });

  override(document, 'domain', {
    get: function() { return TARGET_HOSTNAME; },
    set: function() {}
  });

  var cookieDescriptor = Object.getOwnPropertyDescriptor(Document.prototype, 'cookie') ||
    Object.getOwnPropertyDescriptor(HTMLDocument.prototype, 'cookie');
  if (cookieDescriptor) {
    override(document, 'cookie', {
      get: function() { return cookieDescriptor.get.call(document); },
      set: function(value) { return cookieDescriptor.set.call(document, value); }
    });
  }

  try {
    var originalAssign = window.location.assign;
    window.location.assign = function(url) {
      if (typeof url === 'string') {
        return originalAssign.call(window.location, PROXY_ORIGIN + proxyPath(url));
      }
      return originalAssign.call(window.location, url);
    };
  } catch (e) {}

  try {
    var originalReplace = window.location.replace;
    window.location.replace = function(url) {
      if (typeof url === 'string') {
        return originalReplace.call(window.location, PROXY_ORIGIN + proxyPath(url));
      }
      return originalReplace.call(window.location, url);
    };
  } catch (e) {}

  var originalPushState = history.pushState;
  history.pushState = function(state, title, url) {
    if (typeof url === 'string') {
      return originalPushState.call(history, state, title, proxyPath(url));
    }
    return originalPushState.call(history, state, title, url);
  };

  var originalReplaceState = history.replaceState;
  history.replaceState = function(state, title, url) {
    if (typeof url === 'string') {
      return originalReplaceState.call(history, state, title, proxyPath(url));
    }
    return originalReplaceState.call(history, state, title, url);
  };
})();
</script>
"""
)


def _js_string(value: str) -> str:
    # "</" would end the script element early
    return json.dumps(value).replace("</", "<\\/")


def build_spoof_script(target: TargetDescriptor, proxy_origin: str) -> str:
    """Render the spoofing script for one target."""
    return SPOOF_SCRIPT.substitute(
        target_url=_js_string(target.url),
        target_host=_js_string(target.host),
        target_hostname=_js_string(target.hostname),
        target_origin=_js_string(target.origin),
        target_protocol=_js_string(target.protocol),
        proxy_origin=_js_string(proxy_origin.rstrip("/")),
        proxy_prefix=_js_string(PROXY_PATH_PREFIX),
    )


def inject_spoof_script(markup: str, target: TargetDescriptor, proxy_origin: str) -> str:
    """
    Insert the spoofing script right before the first ``</head>``.
    Documents without one get the script prepended.
    """
    script = build_spoof_script(target, proxy_origin)
    injected, count = _HEAD_CLOSE.subn(lambda m: script + m.group(0), markup, count=1)
    if count:
        return injected
    return script + markup
