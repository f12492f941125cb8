"""
Attachment upload pipeline for chat composers.

Strategies are tried in order until the composer acknowledges the file:

1. ``DOM.setFileInputFiles`` on the ranked native file inputs,
2. an in-page ``DataTransfer`` assigned to the same inputs,
3. a synthetic drag-and-drop onto the composer.

Name matching happens here rather than in the page so it stays testable; the
page scripts only report raw chip texts and file-input names.
"""
from __future__ import annotations

import asyncio
import base64
import mimetypes
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Pattern, Sequence, Tuple

from loguru import logger

from webchat_driver.clients.dom_script import Click, Selectors, js, render, wrap_script
from webchat_driver.errors import ProtocolError, Timeout, UnacknowledgedAttachment, UnsupportedControl
from webchat_driver.schemas.request import Attachment
from webchat_driver.services.diagnostics import log_dom_failure
from webchat_driver.utils.logger import BrowserLogger, make_log
from webchat_driver.utils.polling import wait_until

PLUS_BUTTON_SELECTORS: Selectors = (
    "#composer-plus-btn",
    'button[data-testid="composer-plus-btn"]',
    '[data-testid*="plus"]',
    'button[aria-label*="add"]',
    'button[aria-label*="attachment"]',
    'button[aria-label*="file"]',
)
UPLOAD_MENU_ITEMS = '[data-testid*="upload"],[data-testid*="attachment"],[role="menuitem"],[data-radix-collection-item]'
CHIP_SELECTOR = (
    '[data-testid*="attachment"],[data-testid*="chip"],[data-testid*="upload"],'
    '[aria-label*="Remove"],[aria-label*="remove"]'
)
UPLOAD_IDX_ATTR = "data-webchat-upload-idx"

# Tunables
MENU_REVEAL_DELAY = 0.25
PROBE_WINDOW = 4.0
PROBE_INTERVAL = 0.2
REPOKE_INTERVAL = 0.65
ACK_STABLE_FOR = 0.4
ANCHOR_TIMEOUT = 25.0
ANCHOR_INTERVAL = 0.2
MIN_STEM_LENGTH = 6
MIN_ELLIPSIS_LITERAL = 3
COMPLETION_INTERVAL = 0.25
READY_STABLE_FOR = 1.5
UPLOADING_STABLE_FOR = 3.0
USER_TURN_INTERVAL = 0.25

_EXTENSION = re.compile(r"\.[a-z0-9]{1,10}$", re.IGNORECASE)
_ELLIPSIS = re.compile(r"…|\.\.\.")


@dataclass(frozen=True)
class ComposerSelectors:
    input: Selectors
    send_button: Selectors
    conversation_turn: Selectors
    upload_status: Selectors = ()
    plus_button: Selectors = PLUS_BUTTON_SELECTORS


def normalize_name(name: str) -> str:
    base = re.split(r"[\\/]", name)[-1]
    return re.sub(r"\s+", " ", base.lower()).strip()


def name_stem(normalized: str) -> str:
    return _EXTENSION.sub("", normalized)


def _ellipsis_pattern(text: str) -> Optional[Pattern[str]]:
    parts = _ELLIPSIS.split(text)
    if len(parts) < 2 or sum(len(part.strip()) for part in parts) < MIN_ELLIPSIS_LITERAL:
        return None
    return re.compile(".*".join(re.escape(part) for part in parts))


def matches_attachment_name(raw: Optional[str], expected: str) -> bool:
    """
    True when UI text ``raw`` names the file ``expected``.

    Accepts the full name, the extension-less stem when it is long enough, or
    a label truncated with an ellipsis ("quarterly-rep…pdf").
    """
    text = re.sub(r"\s+", " ", (raw or "").lower()).strip()
    if not text:
        return False
    name = normalize_name(expected)
    stem = name_stem(name)
    use_stem = len(stem) >= MIN_STEM_LENGTH
    if name in text or (use_stem and stem in text):
        return True
    pattern = _ellipsis_pattern(text)
    if pattern is None:
        return False
    return bool(pattern.search(name) or (use_stem and pattern.search(stem)))


@dataclass
class AttachmentVerificationSnapshot:
    chip_count: int = 0
    chip_texts: List[str] = field(default_factory=list)
    input_names: List[str] = field(default_factory=list)
    composer_text: str = ""

    @classmethod
    def from_payload(cls, payload: Any) -> "AttachmentVerificationSnapshot":
        if not isinstance(payload, dict):
            return cls()
        return cls(
            chip_count=int(payload.get("chipCount") or 0),
            chip_texts=[str(t) for t in payload.get("chipTexts") or []],
            input_names=[str(n) for n in payload.get("inputNames") or []],
            composer_text=str(payload.get("composerText") or ""),
        )

    def input_has(self, expected: str) -> bool:
        name = normalize_name(expected)
        return any(name in entry.lower() for entry in self.input_names)

    def acknowledges(self, expected: str, baseline_chip_count: int, *, require_input: bool = True) -> bool:
        if require_input and not self.input_has(expected):
            return False
        if self.chip_count > baseline_chip_count:
            return True
        name = normalize_name(expected)
        stem = name_stem(name)
        text = self.composer_text.lower()
        return stem in text if len(stem) >= MIN_STEM_LENGTH else name in text


# In-page scripts

def _composer_root_js(input_selectors: Selectors) -> str:
    return f"""
  const locateComposerRoot = () => {{
    const node = pick({js(list(input_selectors))});
    if (node) return node.closest('form') ?? node.closest('[data-testid*="composer"]') ?? node.parentElement;
    return document.querySelector('form') ?? document.body;
  }};"""


def _input_by_idx(idx: int) -> str:
    return f"document.querySelector({js(f'input[type=file][{UPLOAD_IDX_ATTR}={js(str(idx))}]')})"


def _file_js(name: str, mime: str, b64: str) -> str:
    return f"""
  const bytes = Uint8Array.from(atob({js(b64)}), (c) => c.charCodeAt(0));
  const file = new File([bytes], {js(name)}, {{ type: {js(mime)} }});
  const transfer = new DataTransfer();
  transfer.items.add(file);"""


def _reveal_menu_js() -> str:
    return wrap_script(f"""
  for (const el of Array.from(document.querySelectorAll({js(UPLOAD_MENU_ITEMS)}))) {{
    const text = (el.textContent || '').toLowerCase();
    const tid = (el.getAttribute('data-testid') || '').toLowerCase();
    if (tid.includes('upload') || tid.includes('attachment') || text.includes('upload') || text.includes('file')) {{
      if (el instanceof HTMLElement) {{ el.click(); return true; }}
    }}
  }}
  return false;""")


def _attachment_texts_js() -> str:
    return wrap_script(f"""
  const texts = [];
  for (const node of Array.from(document.querySelectorAll({js(CHIP_SELECTOR)}))) {{
    for (const value of [node.textContent, node.getAttribute('aria-label'), node.getAttribute('title')]) {{
      if (value && value.trim()) texts.push(value.trim());
    }}
  }}
  const removeCards = Array.from(document.querySelectorAll('[aria-label*="Remove"],[aria-label*="remove"]'))
    .map((btn) => btn?.parentElement?.parentElement?.innerText || '')
    .filter(Boolean);
  const inputNames = [];
  for (const input of Array.from(document.querySelectorAll('input[type="file"]'))) {{
    for (const file of Array.from(input.files || [])) {{ if (file?.name) inputNames.push(file.name); }}
  }}
  return {{ texts: texts.concat(removeCards), inputNames }};""")


def _prepare_candidates_js(input_selectors: Selectors) -> str:
    return wrap_script(_composer_root_js(input_selectors) + f"""
  const root = locateComposerRoot();
  const local = root ? Array.from(root.querySelectorAll('input[type="file"]')) : [];
  const inputs = local.length > 0 ? local : Array.from(document.querySelectorAll('input[type="file"]'));
  const imageOnly = (accept) => {{
    const parts = String(accept || '').split(',').map((p) => p.trim().toLowerCase()).filter(Boolean);
    return parts.length > 0 && parts.every((p) => p.startsWith('image/'));
  }};
  const baselineChipCount = (root ?? document).querySelectorAll({js(CHIP_SELECTOR)}).length;
  const candidates = inputs.map((el, idx) => {{
    el.setAttribute({js(UPLOAD_IDX_ATTR)}, String(idx));
    const score = (el.hasAttribute('multiple') ? 100 : 0) + (imageOnly(el.getAttribute('accept')) ? 0 : 10);
    return {{ idx, score }};
  }});
  candidates.sort((a, b) => b.score - a.score);
  return {{ baselineChipCount, order: candidates.map((c) => c.idx) }};""")


def _dispatch_js(idx: int) -> str:
    return wrap_script(f"""
  const el = {_input_by_idx(idx)};
  if (!(el instanceof HTMLInputElement)) return false;
  el.dispatchEvent(new Event('input', {{ bubbles: true }}));
  el.dispatchEvent(new Event('change', {{ bubbles: true }}));
  return true;""")


def _snapshot_js(input_selectors: Selectors, idx: int) -> str:
    return wrap_script(_composer_root_js(input_selectors) + f"""
  const container = locateComposerRoot() ?? document;
  const chips = Array.from(container.querySelectorAll({js(CHIP_SELECTOR)}));
  const chipTexts = chips.slice(0, 20).map((node) =>
    [node.textContent, node.getAttribute('aria-label'), node.getAttribute('title')].filter(Boolean).join(' ').trim());
  const input = {_input_by_idx(idx)};
  const inputNames = input instanceof HTMLInputElement
    ? Array.from(input.files || []).map((f) => f?.name || '').filter(Boolean)
    : [];
  return {{ chipCount: chips.length, chipTexts, inputNames, composerText: (container.innerText || '').toLowerCase() }};""")


def _data_transfer_js(idx: int, name: str, mime: str, b64: str) -> str:
    return wrap_script(f"""
  const input = {_input_by_idx(idx)};
  if (!(input instanceof HTMLInputElement)) return false;""" + _file_js(name, mime, b64) + """
  input.files = transfer.files;
  input.dispatchEvent(new Event('input', { bubbles: true }));
  input.dispatchEvent(new Event('change', { bubbles: true }));
  return true;""")


def _drop_js(input_selectors: Selectors, name: str, mime: str, b64: str) -> str:
    return wrap_script(_composer_root_js(input_selectors) + f"""
  const target = pick({js(list(input_selectors))}) || locateComposerRoot();
  if (!target) return false;""" + _file_js(name, mime, b64) + """
  for (const type of ['dragenter', 'dragover', 'drop']) {
    target.dispatchEvent(new DragEvent(type, { bubbles: true, cancelable: true, dataTransfer: transfer }));
  }
  return true;""")


def _completion_js(selectors: ComposerSelectors) -> str:
    return wrap_script(f"""
  const button = pick({js(list(selectors.send_button))});
  const disabled = button
    ? isDisabled(button) || window.getComputedStyle(button).pointerEvents === 'none'
    : null;
  const uploading = pickAll({js(list(selectors.upload_status))}).some((node) => {{
    const busy = node.getAttribute('aria-busy');
    const dataState = node.getAttribute('data-state');
    if (busy === 'true' || ['loading', 'uploading', 'pending'].includes(dataState)) return true;
    const text = (node.textContent || '').toLowerCase();
    return /\\buploading\\b/.test(text) || /\\bprocessing\\b/.test(text);
  }});
  const attachedNames = Array.from(document.querySelectorAll(
    '[data-testid*="chip"],[data-testid*="attachment"],[data-testid*="upload"]'
  )).map((node) => node.textContent || '').filter(Boolean);
  for (const btn of Array.from(document.querySelectorAll('[aria-label*="Remove"]'))) {{
    const text = btn?.parentElement?.parentElement?.innerText || '';
    if (text) attachedNames.push(text);
  }}
  const inputNames = [];
  for (const input of Array.from(document.querySelectorAll('input[type="file"]'))) {{
    for (const file of Array.from(input.files || [])) {{ if (file?.name) inputNames.push(file.name); }}
  }}
  return {{ state: button ? (disabled ? 'disabled' : 'ready') : 'missing', uploading, attachedNames, inputNames }};""")


def _user_turn_js(selectors: ComposerSelectors) -> str:
    return wrap_script(f"""
  const turns = pickAll({js(list(selectors.conversation_turn))});
  const userTurns = turns.filter((node) => {{
    const role = (node.getAttribute('data-message-author-role') || node.getAttribute('data-turn') || '').toLowerCase();
    return role === 'user' || Boolean(node.querySelector('[data-message-author-role="user"]'));
  }});
  const last = userTurns[userTurns.length - 1];
  if (!last) return {{ ok: false }};
  const attrs = Array.from(last.querySelectorAll('[aria-label],[title]'))
    .map((el) => ((el.getAttribute('aria-label') || '') + ' ' + (el.getAttribute('title') || '')).trim())
    .filter(Boolean);
  return {{ ok: true, text: last.innerText || '', attrs }};""")


async def _evaluate_quietly(client: Any, expression: str) -> Any:
    try:
        return await client.evaluate(expression)
    except ProtocolError as exc:
        logger.debug("Attachment helper script failed: {}", exc)
        return None


class _AttachmentUpload:
    """State for a single file going through the strategies."""

    def __init__(
        self,
        client: Any,
        attachment: Attachment,
        selectors: ComposerSelectors,
        log: Optional[BrowserLogger],
        clock: Callable[[], float],
        sleep: Callable[[float], Awaitable[Any]],
    ) -> None:
        self.client = client
        self.path = Path(attachment.path).expanduser()
        self.expected = attachment.name
        self.selectors = selectors
        self.log = log
        self.emit = make_log(log)
        self.clock = clock
        self.sleep = sleep
        self.baseline = 0
        self.input_accepted = False
        self._encoded: Optional[Tuple[str, str]] = None

    def encoded(self) -> Tuple[str, str]:
        if self._encoded is None:
            mime = mimetypes.guess_type(self.expected)[0] or "application/octet-stream"
            self._encoded = (mime, base64.b64encode(self.path.read_bytes()).decode("ascii"))
        return self._encoded

    async def reveal_input(self) -> None:
        await _evaluate_quietly(self.client, render(Click(self.selectors.plus_button)))
        await self.sleep(MENU_REVEAL_DELAY)
        await _evaluate_quietly(self.client, _reveal_menu_js())

    async def already_present(self) -> bool:
        payload = await _evaluate_quietly(self.client, _attachment_texts_js()) or {}
        name = normalize_name(self.expected)
        texts = [str(t).lower() for t in payload.get("texts") or []]
        inputs = [str(n).lower() for n in payload.get("inputNames") or []]
        return any(name in text for text in texts) or any(name in entry for entry in inputs)

    async def probe(self, idx: int, poke: Optional[str], *, require_input: bool = True) -> bool:
        last_poke = float("-inf")

        async def snapshot() -> AttachmentVerificationSnapshot:
            nonlocal last_poke
            now = self.clock()
            if poke is not None and now - last_poke >= REPOKE_INTERVAL:
                last_poke = now
                await _evaluate_quietly(self.client, poke)
            payload = await _evaluate_quietly(self.client, _snapshot_js(self.selectors.input, idx))
            current = AttachmentVerificationSnapshot.from_payload(payload)
            if current.input_has(self.expected):
                self.input_accepted = True
            return current

        try:
            final = await wait_until(
                snapshot,
                timeout=PROBE_WINDOW,
                interval=PROBE_INTERVAL,
                stable_for=ACK_STABLE_FOR,
                predicate=lambda snap: snap.acknowledges(self.expected, self.baseline, require_input=require_input),
                description=f"composer to acknowledge {self.expected}",
                clock=self.clock,
                sleep=self.sleep,
            )
        except Timeout:
            return False
        self.emit(f"Attachment snapshot: chips={final.chip_texts} input={final.input_names}")
        return True

    async def via_file_input(self, order: Sequence[int]) -> bool:
        document = await self.client.get_document()
        root_id = document.get("nodeId")
        for idx in order:
            node_id = await self.client.query_selector(root_id, f'input[type="file"][{UPLOAD_IDX_ATTR}="{idx}"]')
            if not node_id:
                continue
            await self.client.set_file_input_files(node_id, [str(self.path)])
            await _evaluate_quietly(self.client, _dispatch_js(idx))
            if await self.probe(idx, _dispatch_js(idx)):
                return True
        return False

    async def via_data_transfer(self, order: Sequence[int]) -> bool:
        mime, b64 = self.encoded()
        for idx in order:
            if not await _evaluate_quietly(self.client, _data_transfer_js(idx, self.expected, mime, b64)):
                continue
            if await self.probe(idx, _dispatch_js(idx)):
                return True
        return False

    async def via_drop(self, order: Sequence[int]) -> bool:
        mime, b64 = self.encoded()
        if not await _evaluate_quietly(self.client, _drop_js(self.selectors.input, self.expected, mime, b64)):
            return False
        return await self.probe(order[0], None, require_input=False)

    async def wait_anchored(self, timeout: float) -> bool:
        async def texts() -> List[str]:
            payload = await _evaluate_quietly(self.client, _attachment_texts_js()) or {}
            return [str(t) for t in payload.get("texts") or []]

        try:
            await wait_until(
                texts,
                timeout=timeout,
                interval=ANCHOR_INTERVAL,
                predicate=lambda values: any(matches_attachment_name(v, self.expected) for v in values),
                description=f"{self.expected} to appear in the composer",
                clock=self.clock,
                sleep=self.sleep,
            )
        except Timeout:
            return False
        return True


async def upload_attachment(
    client: Any,
    attachment: Attachment,
    selectors: ComposerSelectors,
    log: Optional[BrowserLogger] = None,
    *,
    anchor_timeout: float = ANCHOR_TIMEOUT,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> None:
    """
    Attach one local file to the composer.

    Raises:
        UnsupportedControl: No file input exists in the page.
        UnacknowledgedAttachment: The composer never showed the file.
    """
    upload = _AttachmentUpload(client, attachment, selectors, log, clock, sleep)
    await upload.reveal_input()

    if await upload.already_present():
        upload.emit(f"Attachment already present: {upload.expected}")
        return

    setup = await client.evaluate(_prepare_candidates_js(selectors.input)) or {}
    order = [int(i) for i in setup.get("order") or []]
    upload.baseline = int(setup.get("baselineChipCount") or 0)
    if not order:
        await log_dom_failure(client, log, "file-input-missing")
        raise UnsupportedControl("file-input", "Unable to locate a file attachment input in the composer.")

    strategies = (
        ("setFileInputFiles", upload.via_file_input),
        ("data-transfer", upload.via_data_transfer),
        ("drag-and-drop", upload.via_drop),
    )
    for label, strategy in strategies:
        if await strategy(order):
            upload.emit(f"Attachment {upload.expected} acknowledged via {label}")
            break
        logger.debug("Attachment strategy {} not acknowledged for {}", label, upload.expected)

    if await upload.wait_anchored(anchor_timeout):
        suffix = "file input confirmed" if upload.input_accepted else "UI anchored"
        upload.emit(f"Attachment queued: {upload.expected} ({suffix})")
        return

    await log_dom_failure(client, log, "file-upload-missing")
    if upload.input_accepted:
        raise UnacknowledgedAttachment(
            f"Attachment input accepted the file but the composer did not acknowledge {upload.expected}."
        )
    raise UnacknowledgedAttachment(f"Attachment {upload.expected} did not register with the composer in time.")


def _all_named(values: Iterable[str], names: Sequence[str]) -> bool:
    materialized = list(values)
    return all(any(matches_attachment_name(v, name) for v in materialized) for name in names)


async def wait_for_attachment_completion(
    client: Any,
    names: Sequence[str],
    timeout: float,
    selectors: ComposerSelectors,
    log: Optional[BrowserLogger] = None,
    *,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> None:
    """
    Wait until uploads finish: every name shown and the send button ready for a
    stability window (longer while an upload indicator is visible). Falls back
    to the file inputs for surfaces that only render names after sending.
    """
    expression = _completion_js(selectors)
    deadline = clock() + timeout
    match_since: Optional[float] = None
    input_since: Optional[float] = None
    value: Dict[str, Any] = {}

    while True:
        value = await client.evaluate(expression) or {}
        now = clock()
        state = value.get("state")
        attached = [str(n) for n in value.get("attachedNames") or []]
        stable_for = UPLOADING_STABLE_FOR if value.get("uploading") else READY_STABLE_FOR

        if _all_named(attached, names):
            if state == "ready":
                match_since = now if match_since is None else match_since
                if now - match_since >= stable_for:
                    return
            else:
                match_since = None
            if state == "missing" and attached:
                return
        else:
            match_since = None

        if _all_named(value.get("inputNames") or [], names) and state in ("ready", "missing"):
            input_since = now if input_since is None else input_since
            if now - input_since >= stable_for:
                return
        else:
            input_since = None

        if now >= deadline:
            break
        await sleep(min(COMPLETION_INTERVAL, deadline - now))

    make_log(log)("Attachment upload timed out while waiting for the composer to become ready.")
    await log_dom_failure(client, log, "file-upload-timeout")
    raise Timeout("Attachments did not finish uploading before timeout.", last_state=value)


async def wait_for_user_turn_attachments(
    client: Any,
    names: Sequence[str],
    timeout: float,
    selectors: ComposerSelectors,
    log: Optional[BrowserLogger] = None,
    *,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> None:
    """Confirm the sent user message carries every attachment name."""
    if not names:
        return
    expression = _user_turn_js(selectors)

    def carries_all(value: Dict[str, Any]) -> bool:
        if not value.get("ok"):
            return False
        haystack = "\n".join([value.get("text") or "", *(value.get("attrs") or [])]).lower()
        for name in names:
            normalized = normalize_name(name)
            stem = name_stem(normalized)
            if normalized not in haystack and not (len(stem) >= MIN_STEM_LENGTH and stem in haystack):
                return False
        return True

    async def probe() -> Dict[str, Any]:
        return await client.evaluate(expression) or {}

    try:
        await wait_until(
            probe,
            timeout=timeout,
            interval=USER_TURN_INTERVAL,
            predicate=carries_all,
            description="attachment names on the sent message",
            clock=clock,
            sleep=sleep,
        )
    except Timeout as exc:
        make_log(log)("Sent user message did not show expected attachment names in time.")
        await log_dom_failure(client, log, "attachment-missing-user-turn")
        raise UnacknowledgedAttachment("Attachment was not present on the sent user message.") from exc


__all__ = [
    "AttachmentVerificationSnapshot",
    "ComposerSelectors",
    "matches_attachment_name",
    "normalize_name",
    "upload_attachment",
    "wait_for_attachment_completion",
    "wait_for_user_turn_attachments",
]
