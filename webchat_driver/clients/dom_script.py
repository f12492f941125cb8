"""
Typed DOM commands rendered to in-page JavaScript.

Provider adapters describe what they want (selector lists, phrases, text) with
these dataclasses; ``render`` turns them into expressions for
``Runtime.evaluate``. Every dynamic value is embedded as a JSON literal.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Optional, Tuple

Selectors = Tuple[str, ...]

# Shared in-page helpers; ``pick`` honours the priority order of a selector list.
_PRELUDE = r"""
  const pick = (selectors, root) => {
    const scope = root || document;
    for (const selector of selectors) {
      const node = scope.querySelector(selector);
      if (node) return node;
    }
    return null;
  };
  const pickAll = (selectors, root) => {
    const scope = root || document;
    const seen = new Set();
    const out = [];
    for (const selector of selectors) {
      for (const node of Array.from(scope.querySelectorAll(selector))) {
        if (!seen.has(node)) { seen.add(node); out.push(node); }
      }
    }
    return out;
  };
  const isDisabled = (node) => Boolean(node) && (
    node.hasAttribute('disabled') ||
    node.getAttribute('aria-disabled') === 'true' ||
    node.getAttribute('data-disabled') === 'true'
  );
  const isVisible = (node) => node instanceof HTMLElement && node.offsetParent !== null;
"""


def js(value: Any) -> str:
    """JSON literal usable inside a script."""
    return json.dumps(value, ensure_ascii=False)


def wrap_script(body: str) -> str:
    """Wrap ``body`` in an IIFE with the shared helpers in scope."""
    return "(() => {" + _PRELUDE + body + "\n})()"


@dataclass(frozen=True)
class SignInHints:
    """How a provider page looks when it bounced to an auth flow."""

    url_fragments: Tuple[str, ...] = ()
    path_pattern: Optional[str] = None
    body_phrases: Tuple[str, ...] = ()
    cta_selectors: Selectors = ()
    cta_prefixes: Tuple[str, ...] = ()

    def to_js(self) -> str:
        return f"""
    const signIn = (() => {{
      const href = (location.href || '').toLowerCase();
      if ({js(list(self.url_fragments))}.some((frag) => href.includes(frag))) return true;
      const pattern = {js(self.path_pattern)};
      if (pattern && new RegExp(pattern, 'i').test(location.pathname || '')) return true;
      const phrases = {js(list(self.body_phrases))};
      const body = (document.body?.innerText || '').toLowerCase();
      if (phrases.length > 0 && phrases.every((p) => body.includes(p))) return true;
      const prefixes = {js(list(self.cta_prefixes))};
      if (prefixes.length === 0) return false;
      return pickAll({js(list(self.cta_selectors))}).some((node) => {{
        const label = (node.textContent || node.getAttribute('aria-label') || '').trim().toLowerCase();
        return prefixes.some((prefix) => label.startsWith(prefix));
      }});
    }})();"""


@dataclass(frozen=True)
class QueryReady:
    """Is the primary input present (and enabled)? Also reports sign-in redirects."""

    selectors: Selectors
    require_enabled: bool = True
    sign_in: Optional[SignInHints] = None

    def to_js(self) -> str:
        sign_in = self.sign_in.to_js() if self.sign_in else "\n    const signIn = false;"
        return wrap_script(f"""
  const node = pick({js(list(self.selectors))});
  const ready = Boolean(node) && !({js(self.require_enabled)} && isDisabled(node));
  {sign_in}
  return {{ ready, requiresLogin: !ready && signIn, href: location.href }};""")


@dataclass(frozen=True)
class Click:
    selectors: Selectors
    require_enabled: bool = False

    def to_js(self) -> str:
        return wrap_script(f"""
  const node = pick({js(list(self.selectors))});
  if (!(node instanceof HTMLElement)) return 'not-found';
  if ({js(self.require_enabled)} && isDisabled(node)) return 'disabled';
  node.click();
  return 'clicked';""")


@dataclass(frozen=True)
class ClickByText:
    """Click the first item whose visible text contains ``phrase`` (case-insensitive)."""

    selectors: Selectors
    phrase: str

    def to_js(self) -> str:
        return wrap_script(f"""
  const phrase = {js(self.phrase.lower())};
  for (const item of pickAll({js(list(self.selectors))})) {{
    const text = (item.textContent || '').trim().toLowerCase();
    if (!text.includes(phrase)) continue;
    if (item instanceof HTMLElement) item.click();
    return 'clicked';
  }}
  return 'not-found';""")


@dataclass(frozen=True)
class ActiveState:
    """True when an "active" marker exists and names ``phrase`` in its label or text."""

    selectors: Selectors
    phrase: str

    def to_js(self) -> str:
        return wrap_script(f"""
  const phrase = {js(self.phrase.lower())};
  return pickAll({js(list(self.selectors))}).some((node) => {{
    const label = (node.getAttribute('aria-label') || '').toLowerCase();
    const text = (node.textContent || '').toLowerCase();
    return label.includes(phrase) || text.includes(phrase);
  }});""")


@dataclass(frozen=True)
class InsertText:
    """Type into the input via execCommand('insertText'), falling back to input events."""

    selectors: Selectors
    text: str

    def to_js(self) -> str:
        return wrap_script(f"""
  const editor = pick({js(list(self.selectors))});
  if (!(editor instanceof HTMLElement)) return 'no-editor';
  const text = {js(self.text)};
  const isField = editor instanceof HTMLTextAreaElement || editor instanceof HTMLInputElement;
  editor.focus();
  if (isField) {{ editor.value = ''; }} else {{ editor.textContent = ''; }}
  let inserted = false;
  if (typeof document.execCommand === 'function') {{
    try {{ inserted = document.execCommand('insertText', false, text); }} catch (err) {{ inserted = false; }}
  }}
  const current = () => (isField ? editor.value : editor.textContent) || '';
  if (!inserted || current().trim().length === 0) {{
    if (isField) {{
      const setter = Object.getOwnPropertyDescriptor(Object.getPrototypeOf(editor), 'value')?.set;
      if (setter) {{ setter.call(editor, text); }} else {{ editor.value = text; }}
    }} else {{
      editor.textContent = text;
    }}
    editor.dispatchEvent(new InputEvent('input', {{ bubbles: true, data: text, inputType: 'insertText' }}));
  }}
  return current().trim().length > 0 ? 'typed' : 'empty';""")


@dataclass(frozen=True)
class SubmitOrEnter:
    """Click an enabled send control, else focus the input so the caller can press Enter."""

    send_selectors: Selectors
    input_selectors: Selectors

    def to_js(self) -> str:
        return wrap_script(f"""
  const btn = pick({js(list(self.send_selectors))});
  if (btn instanceof HTMLElement && !isDisabled(btn)) {{
    btn.click();
    return 'clicked';
  }}
  const editor = pick({js(list(self.input_selectors))});
  if (editor instanceof HTMLElement) {{
    editor.focus();
    return 'enter';
  }}
  return 'not-found';""")


@dataclass(frozen=True)
class ReadRevealedText:
    """Text of a revealed region, minus a leading caption duplicated from its toggle."""

    selectors: Selectors
    caption_selectors: Selectors = ()

    def to_js(self) -> str:
        return wrap_script(f"""
  const el = pick({js(list(self.selectors))});
  if (!el) return '';
  const full = (el.textContent || '').trim();
  const caption = pick({js(list(self.caption_selectors))}, el);
  const captionText = (caption?.textContent || '').trim();
  if (captionText && full.startsWith(captionText)) return full.slice(captionText.length).trim();
  return full;""")


@dataclass(frozen=True)
class CountMatches:
    selectors: Selectors

    def to_js(self) -> str:
        return wrap_script(f"""
  return pickAll({js(list(self.selectors))}).length;""")


@dataclass(frozen=True)
class ResponseStatus:
    """
    Classify the newest response turn as waiting / generating / streaming / done.

    ``min_turns`` ignores turns that existed before the prompt was sent.
    """

    turn_selectors: Selectors
    text_selectors: Selectors
    complete_selectors: Selectors
    spinner_selectors: Selectors = ()
    busy_selectors: Selectors = ()
    generating_phrases: Tuple[str, ...] = ()
    min_turns: int = 0

    def to_js(self) -> str:
        return wrap_script(f"""
  const turns = pickAll({js(list(self.turn_selectors))});
  if (turns.length === 0 || turns.length <= {js(self.min_turns)}) {{
    return {{ status: 'waiting', turnCount: turns.length }};
  }}
  const lastTurn = turns[turns.length - 1];
  const content = pick({js(list(self.text_selectors))}, lastTurn);
  const text = (content?.textContent || '').trim();
  const html = content instanceof HTMLElement ? content.innerHTML : null;
  const turnId = lastTurn.getAttribute('data-testid') || lastTurn.id || null;
  const messageId = lastTurn.getAttribute('data-message-id')
    || lastTurn.querySelector('[data-message-id]')?.getAttribute('data-message-id') || null;
  const base = {{ turnCount: turns.length, text, html, turnId, messageId }};
  const lower = text.toLowerCase();
  if ({js([p.lower() for p in self.generating_phrases])}.some((p) => lower.includes(p))) {{
    return {{ ...base, status: 'generating' }};
  }}
  const busy = pickAll({js(list(self.busy_selectors))}).some(isVisible);
  const footer = pick({js(list(self.complete_selectors))}, lastTurn);
  if (footer && !busy && text.length > 0) return {{ ...base, status: 'done' }};
  const spinners = pickAll({js(list(self.spinner_selectors))}, lastTurn).filter(isVisible);
  if (text.length > 0 && spinners.length === 0 && !footer) return {{ ...base, status: 'streaming' }};
  return {{ ...base, status: 'generating' }};""")


DomCommand = Any


def render(command: DomCommand) -> str:
    """Translate a command into an expression for ``Runtime.evaluate``."""
    return command.to_js()


__all__ = [
    "ActiveState",
    "Click",
    "ClickByText",
    "CountMatches",
    "InsertText",
    "QueryReady",
    "ReadRevealedText",
    "ResponseStatus",
    "Selectors",
    "SignInHints",
    "SubmitOrEnter",
    "js",
    "render",
    "wrap_script",
]
