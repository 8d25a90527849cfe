"""Browser runtime and page assembly for shokamark.

Generates the CSS and JavaScript that mount a password form on every
encrypted block and encrypted post, and wraps rendered fragments into a
standalone HTML page with the runtime injected when it is needed.
"""

from pathlib import Path

from bs4 import BeautifulSoup

from .config import ShokamarkConfig, TemplateConfig
from .crypto import ITERATIONS
from .renderers import escape_html, sanitize_css_color
from .widget import ERROR_RESET_DELAY, RUNTIME_ATTR

_DEFAULT_TEMPLATE = TemplateConfig()


def _color(value: str, fallback: str) -> str:
    return sanitize_css_color(value) or fallback


def _get_css(template: TemplateConfig) -> str:
    """Generate CSS for the decryption widgets."""
    primary = _color(template.color_primary, _DEFAULT_TEMPLATE.color_primary)
    error = _color(template.color_error, _DEFAULT_TEMPLATE.color_error)
    return f"""
/* shokamark styles */
.encrypted-block-locked,
.encrypted-post-locked {{
  text-align: center;
  padding: 1.5rem;
  border: 2px dashed #ccc;
  border-radius: 8px;
  margin: 1.5rem auto;
}}

.encrypted-post-locked {{
  max-width: 420px;
  padding: 2.5rem 2rem;
}}

.encrypted-post-title {{
  font-size: 1.25rem;
  font-weight: 600;
  margin: 0 0 0.5rem;
}}

.encrypted-post-subtitle {{
  color: #666;
  margin: 0 0 1rem;
}}

.encrypted-block-label {{
  color: #666;
  font-size: 0.9rem;
  margin-bottom: 0.75rem;
}}

.encrypted-block-input-group,
.encrypted-post-input-group {{
  display: flex;
  gap: 0.5rem;
  justify-content: center;
}}

.encrypted-block-input,
.encrypted-post-input {{
  padding: 0.5rem 0.75rem;
  border: 1px solid #ccc;
  border-radius: 4px;
  font-size: 1rem;
}}

.encrypted-block-input:focus,
.encrypted-post-input:focus {{
  border-color: {primary};
  outline: none;
}}

.encrypted-block-btn,
.encrypted-post-btn {{
  padding: 0.5rem 1rem;
  background: {primary};
  color: white;
  border: none;
  border-radius: 4px;
  cursor: pointer;
}}

.encrypted-block-btn:disabled,
.encrypted-post-btn:disabled,
.encrypted-block-input:disabled,
.encrypted-post-input:disabled {{
  opacity: 0.5;
  cursor: not-allowed;
}}

.encrypted-error-text {{
  color: {error};
  font-size: 0.9rem;
  margin-top: 0.5rem;
}}

.encrypted-shake {{
  animation: encrypted-shake 0.4s;
}}

@keyframes encrypted-shake {{
  0%, 100% {{ transform: translateX(0); }}
  25% {{ transform: translateX(-4px); }}
  75% {{ transform: translateX(4px); }}
}}
"""


def _get_javascript(template: TemplateConfig, iterations: int = ITERATIONS) -> str:
    """Generate JavaScript that mounts the decryption widgets."""
    reset_ms = round(ERROR_RESET_DELAY * 1000)
    return f"""
/* shokamark runtime */
(function() {{
  'use strict';

  const CONFIG = {{
    placeholder: {_js_string(template.placeholder)},
    buttonText: {_js_string(template.button_text)},
    errorText: {_js_string(template.error_text)},
    lockedLabel: {_js_string(template.locked_label)},
    postTitle: {_js_string(template.post_title)},
    postDescription: {_js_string(template.post_description)},
    iterations: {int(iterations)},
    errorResetDelay: {reset_ms}
  }};

  function fromBase64(value) {{
    const binary = atob(value);
    const bytes = new Uint8Array(binary.length);
    for (let i = 0; i < binary.length; i++) {{
      bytes[i] = binary.charCodeAt(i);
    }}
    return bytes;
  }}

  async function deriveKey(password, salt) {{
    const keyMaterial = await crypto.subtle.importKey(
      'raw',
      new TextEncoder().encode(password),
      'PBKDF2',
      false,
      ['deriveKey']
    );
    return crypto.subtle.deriveKey(
      {{ name: 'PBKDF2', salt: salt, iterations: CONFIG.iterations, hash: 'SHA-256' }},
      keyMaterial,
      {{ name: 'AES-GCM', length: 256 }},
      false,
      ['decrypt']
    );
  }}

  // Resolves to the plaintext, or null on any failure
  async function decryptContent(cipher, iv, salt, password) {{
    try {{
      const key = await deriveKey(password, fromBase64(salt));
      const plaintext = await crypto.subtle.decrypt(
        {{ name: 'AES-GCM', iv: fromBase64(iv) }},
        key,
        fromBase64(cipher)
      );
      return new TextDecoder().decode(plaintext);
    }} catch (e) {{
      return null;
    }}
  }}

  function el(tag, className, text) {{
    const node = document.createElement(tag);
    if (className) node.className = className;
    if (text) node.textContent = text;
    return node;
  }}

  function mount(element, mode) {{
    if (element.dataset.shokamarkMounted) return;
    element.dataset.shokamarkMounted = 'true';

    const prefix = mode === 'post' ? 'encrypted-post' : 'encrypted-block';
    const {{ cipher, iv, salt }} = element.dataset;
    if (!cipher || !iv || !salt) {{
      element.appendChild(el('div', prefix + '-error', 'Error: Missing encryption data'));
      return;
    }}

    const locked = el('div', prefix + '-locked');
    if (mode === 'post') {{
      locked.appendChild(el('p', 'encrypted-post-title', CONFIG.postTitle));
      locked.appendChild(el('p', 'encrypted-post-subtitle', CONFIG.postDescription));
    }} else {{
      locked.appendChild(el('div', 'encrypted-block-label', CONFIG.lockedLabel));
    }}
    const group = el('div', prefix + '-input-group');
    const input = el('input', prefix + '-input');
    input.type = 'password';
    input.autocomplete = 'off';
    input.placeholder = CONFIG.placeholder;
    const button = el('button', prefix + '-btn', CONFIG.buttonText);
    button.type = 'button';
    const error = el('p', 'encrypted-error-text', CONFIG.errorText);
    error.style.display = 'none';
    group.appendChild(input);
    group.appendChild(button);
    locked.appendChild(group);
    locked.appendChild(error);
    element.appendChild(locked);

    let state = 'locked';
    let resetTimer = null;

    function setState(next) {{
      state = next;
      input.disabled = next === 'decrypting';
      button.disabled = next === 'decrypting';
      button.classList.toggle('encrypted-shake', next === 'error');
      error.style.display = next === 'error' ? 'block' : 'none';
    }}

    function reveal(html) {{
      element.removeAttribute('data-cipher');
      element.removeAttribute('data-iv');
      element.removeAttribute('data-salt');
      element.removeAttribute('data-shokamark-mounted');
      if (mode === 'post') {{
        element.innerHTML = html;
        element.classList.remove('encrypted-post');
        requestAnimationFrame(() => {{
          document.dispatchEvent(new CustomEvent('content:decrypted'));
        }});
      }} else {{
        const content = el('div', 'encrypted-block-content');
        content.innerHTML = html;
        element.replaceChildren(content);
        // Mount blocks nested in the revealed content
        init();
      }}
    }}

    async function handleDecrypt() {{
      if (state === 'decrypting' || state === 'unlocked') return;
      const password = input.value;
      if (!password) return;

      setState('decrypting');
      const result = await decryptContent(cipher, iv, salt, password);

      // The element was removed while decrypting
      if (!element.isConnected) return;

      if (result === null) {{
        setState('error');
        clearTimeout(resetTimer);
        resetTimer = setTimeout(() => setState('locked'), CONFIG.errorResetDelay);
        input.value = '';
        return;
      }}

      state = 'unlocked';
      clearTimeout(resetTimer);
      reveal(result);
    }}

    button.addEventListener('click', handleDecrypt);
    input.addEventListener('keydown', (e) => {{
      if (e.key === 'Enter') handleDecrypt();
    }});
  }}

  function init() {{
    document.querySelectorAll('.encrypted-post[data-cipher]').forEach((node) => mount(node, 'post'));
    document.querySelectorAll('.encrypted-block[data-cipher]').forEach((node) => mount(node, 'block'));
  }}

  // Blocks inside a decrypted post are mounted once it is spliced in
  document.addEventListener('content:decrypted', init);

  if (document.readyState === 'loading') {{
    document.addEventListener('DOMContentLoaded', init);
  }} else {{
    init();
  }}
}})();
"""


def _js_string(s: str) -> str:
    """Escape a string for JavaScript."""
    return (
        '"'
        + str(s)
        .replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("</", "<\\/")
        + '"'
    )


def generate_css(config: ShokamarkConfig | None = None) -> str:
    """Generate CSS for the decryption widgets.

    Args:
        config: Optional configuration for template customization.

    Returns:
        CSS string.
    """
    template = config.template if config else TemplateConfig()
    return _get_css(template)


def generate_javascript(config: ShokamarkConfig | None = None) -> str:
    """Generate the decryption runtime JavaScript.

    Args:
        config: Optional configuration; its iteration count must match the
            one used at build time.

    Returns:
        JavaScript string.
    """
    template = config.template if config else TemplateConfig()
    iterations = config.encryption.iterations if config else ITERATIONS
    return _get_javascript(template, iterations)


def write_assets(
    output_dir: Path,
    config: ShokamarkConfig | None = None,
) -> tuple[Path, Path]:
    """Write CSS and JavaScript files to a directory.

    Returns:
        Tuple of (css_path, js_path).
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    css_path = output_dir / "shokamark.css"
    js_path = output_dir / "shokamark.js"

    css_path.write_text(generate_css(config), encoding="utf-8")
    js_path.write_text(generate_javascript(config), encoding="utf-8")

    return css_path, js_path


def needs_runtime(html: str) -> bool:
    """Whether the HTML carries any encrypted payload."""
    return "data-cipher" in html


def inject_runtime(html: str, config: ShokamarkConfig | None = None) -> str:
    """Inject the runtime ``<style>`` and ``<script>`` into a document head.

    Does nothing if the runtime is already present or the document has no
    ``<head>`` and no ``<html>`` to put one in.
    """
    soup = BeautifulSoup(html, "html.parser")
    head = soup.find("head")
    if not head:
        html_tag = soup.find("html")
        if not html_tag:
            return html
        head = soup.new_tag("head")
        html_tag.insert(0, head)

    if head.find(attrs={RUNTIME_ATTR: True}):
        return html

    style_tag = soup.new_tag("style")
    style_tag[RUNTIME_ATTR] = "true"
    style_tag.string = generate_css(config)
    head.append(style_tag)

    script_tag = soup.new_tag("script")
    script_tag[RUNTIME_ATTR] = "true"
    script_tag.string = generate_javascript(config)
    head.append(script_tag)

    return str(soup)


def build_page(
    fragment: str,
    title: str | None = None,
    config: ShokamarkConfig | None = None,
) -> str:
    """Wrap a rendered fragment into a standalone HTML page.

    The decryption runtime is injected only when the fragment contains
    encrypted content.
    """
    page_title = escape_html(title) if title else "Untitled"
    page = f"""<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>{page_title}</title>
</head>
<body>
<article class="custom-content">
{fragment}
</article>
</body>
</html>
"""
    if needs_runtime(fragment):
        page = inject_runtime(page, config)
    return page
