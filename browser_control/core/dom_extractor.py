from __future__ import annotations

import asyncio
import logging
from typing import Any, Union

from playwright.async_api import Frame, Page

from browser_control.core.compaction import CompactionManager
from browser_control.core.models import (
    DEFAULT_FRAME_VIEWPORT,
    CompactBudget,
    CompactElement,
    InteractiveElement,
    PageState,
    PageStateCompact,
    PageStateLite,
    PageStateOptions,
    TableSummary,
    Viewport,
)

logger = logging.getLogger("browser_control.extractor")

Target = Union[Page, Frame]

INTERACTIVE_SELECTOR = ", ".join(
    [
        "a[href]",
        "button",
        "input",
        "select",
        "textarea",
        '[role="button"]',
        '[role="link"]',
        '[role="checkbox"]',
        '[role="radio"]',
        '[role="tab"]',
        '[role="menuitem"]',
        '[role="textbox"]',
        '[role="combobox"]',
        "[onclick]",
        '[tabindex]:not([tabindex="-1"])',
        "[data-test-id]",
        "[data-selenium-test]",
        '[contenteditable="true"]',
    ]
)

# Shared by the element scans. Builds the most readable selector that matches
# exactly one element and falls back to an nth-of-type path.
SELECTOR_HELPERS_JS = r"""
  const cssEscape = (v) => (window.CSS && CSS.escape) ? CSS.escape(v) : String(v).replace(/[^a-zA-Z0-9_-]/g, '\\$&');
  const attrQuote = (v) => String(v).replace(/\\/g, '\\\\').replace(/"/g, '\\"');
  const isUnique = (sel) => {
    try { return document.querySelectorAll(sel).length === 1; } catch (e) { return false; }
  };
  const pathSelector = (el) => {
    const parts = [];
    let node = el;
    while (node && node.nodeType === 1 && node !== document.body && node !== document.documentElement) {
      if (node.id && isUnique('#' + cssEscape(node.id))) {
        parts.unshift('#' + cssEscape(node.id));
        return parts.join(' > ');
      }
      let idx = 1;
      let sib = node.previousElementSibling;
      while (sib) {
        if (sib.tagName === node.tagName) idx++;
        sib = sib.previousElementSibling;
      }
      parts.unshift(node.tagName.toLowerCase() + ':nth-of-type(' + idx + ')');
      node = node.parentElement;
    }
    parts.unshift('body');
    return parts.join(' > ');
  };
  const buildSelector = (el) => {
    const tag = el.tagName.toLowerCase();
    const candidates = [];
    const testId = el.getAttribute('data-test-id');
    if (testId) candidates.push('[data-test-id="' + attrQuote(testId) + '"]');
    const seleniumTest = el.getAttribute('data-selenium-test');
    if (seleniumTest) candidates.push('[data-selenium-test="' + attrQuote(seleniumTest) + '"]');
    const dataTestId = el.getAttribute('data-testid');
    if (dataTestId) candidates.push('[data-testid="' + attrQuote(dataTestId) + '"]');
    if (el.id) candidates.push('#' + cssEscape(el.id));
    const name = el.getAttribute('name');
    if (name) candidates.push(tag + '[name="' + attrQuote(name) + '"]');
    const aria = el.getAttribute('aria-label');
    if (aria) candidates.push(tag + '[aria-label="' + attrQuote(aria) + '"]');
    const href = el.getAttribute('href');
    if (tag === 'a' && href && href.length < 80) candidates.push('a[href="' + attrQuote(href) + '"]');
    if (typeof el.className === 'string' && el.className) {
      const cls = el.className.split(/\s+/).filter((c) => c && !c.includes(':') && c.length < 30);
      if (cls.length) candidates.push(tag + '.' + cssEscape(cls[0]));
    }
    for (const sel of candidates) {
      if (isUnique(sel)) return sel;
    }
    return pathSelector(el);
  };
  const isRendered = (el, rect, minSize) => {
    if (rect.width < minSize || rect.height < minSize) return false;
    try {
      const style = window.getComputedStyle(el);
      if (style.display === 'none' || style.visibility === 'hidden' || style.opacity === '0') return false;
    } catch (e) {}
    return true;
  };
  const inViewport = (rect) => (
    rect.y >= 0 && rect.y < window.innerHeight && rect.x >= 0 && rect.x < window.innerWidth
  );
"""

FILTERED_HTML_JS = r"""
(maxLen) => {
  const removeElements = new Set(['script', 'style', 'noscript', 'svg', 'path', 'meta', 'link', 'object', 'embed', 'template', 'iframe']);
  const keepAttributes = new Set([
    'id', 'name', 'href', 'src', 'alt', 'title', 'placeholder', 'type', 'value',
    'role', 'disabled', 'readonly', 'checked', 'selected', 'for', 'action', 'method',
    'target', 'rel', 'aria-label', 'aria-labelledby', 'aria-describedby',
    'data-test-id', 'data-selenium-test', 'data-testid', 'data-cy'
  ]);
  const voidElements = new Set(['img', 'br', 'hr', 'input', 'meta', 'link', 'area', 'base', 'col', 'embed', 'param', 'source', 'track', 'wbr']);
  let total = 0;
  let truncated = false;

  const walk = (node) => {
    if (truncated) return '';
    if (node.nodeType === Node.TEXT_NODE) {
      const text = (node.textContent || '').trim();
      if (!text) return '';
      total += text.length + 1;
      if (total > maxLen) { truncated = true; return ''; }
      return text + ' ';
    }
    if (node.nodeType !== Node.ELEMENT_NODE) return '';
    const tag = node.tagName.toLowerCase();
    if (removeElements.has(tag)) return '';
    try {
      const style = window.getComputedStyle(node);
      if (style.display === 'none' || style.visibility === 'hidden') return '';
    } catch (e) {}

    let out = '<' + tag;
    for (const attr of node.attributes) {
      const keep = keepAttributes.has(attr.name) || attr.name.startsWith('data-test') || attr.name.startsWith('data-selenium');
      if (keep && attr.value) out += ' ' + attr.name + '="' + attr.value.replace(/"/g, '&quot;') + '"';
    }
    out += '>';
    total += out.length;
    if (total > maxLen) { truncated = true; return out; }
    for (const child of node.childNodes) {
      out += walk(child);
      if (truncated) break;
    }
    if (!voidElements.has(tag)) out += '</' + tag + '>';
    return out;
  };

  if (!document.body) return '';
  const html = walk(document.body);
  return truncated ? html + '... (truncated)' : html;
}
"""

TEXT_CONTENT_JS = r"""
(maxLen) => {
  if (!document.body) return '';
  const walker = document.createTreeWalker(document.body, NodeFilter.SHOW_TEXT, {
    acceptNode(node) {
      const parent = node.parentElement;
      if (!parent) return NodeFilter.FILTER_REJECT;
      const tag = parent.tagName.toLowerCase();
      if (tag === 'script' || tag === 'style' || tag === 'noscript') return NodeFilter.FILTER_REJECT;
      try {
        const style = window.getComputedStyle(parent);
        if (style.display === 'none' || style.visibility === 'hidden') return NodeFilter.FILTER_REJECT;
      } catch (e) {}
      return NodeFilter.FILTER_ACCEPT;
    }
  });
  const parts = [];
  let total = 0;
  while (walker.nextNode()) {
    const text = (walker.currentNode.textContent || '').trim();
    if (!text) continue;
    total += text.length + 1;
    if (total > maxLen) break;
    parts.push(text);
  }
  const result = parts.join(' ').replace(/\s+/g, ' ').trim();
  return result.length > maxLen ? result.substring(0, maxLen) + '...' : result;
}
"""

ELEMENT_COUNT_JS = r"""
(selector) => document.querySelectorAll(selector).length
"""

INTERACTIVE_ELEMENTS_JS = (
    r"""
(args) => {
"""
    + SELECTOR_HELPERS_JS
    + r"""
  const priority = (el, rect) => {
    let score = 0;
    const tag = el.tagName.toLowerCase();
    if (inViewport(rect)) score += 100;
    if (el.getAttribute('data-test-id') || el.getAttribute('data-selenium-test')) score += 50;
    if (tag === 'input' || tag === 'textarea' || tag === 'select') score += 30;
    if (tag === 'button' || el.getAttribute('role') === 'button') score += 20;
    if (tag === 'a') score += 10;
    return score;
  };
  const labelOf = (el) => {
    let text = '';
    if (el instanceof HTMLInputElement || el instanceof HTMLTextAreaElement) {
      text = el.placeholder || el.value || el.name || '';
    } else if (el instanceof HTMLSelectElement) {
      text = (el.options[el.selectedIndex] || {}).text || el.name || '';
    } else {
      const direct = Array.from(el.childNodes)
        .filter((n) => n.nodeType === Node.TEXT_NODE)
        .map((n) => n.textContent.trim())
        .join(' ')
        .trim();
      text = direct || (el.textContent || '').trim();
    }
    if (!text) text = el.getAttribute('aria-label') || el.getAttribute('title') || '';
    if (!text) {
      const labelledBy = el.getAttribute('aria-labelledby');
      const labelEl = labelledBy ? document.getElementById(labelledBy) : null;
      if (labelEl) text = (labelEl.textContent || '').trim();
    }
    if (!text && el.id) {
      const labelFor = document.querySelector('label[for="' + attrQuote(el.id) + '"]');
      if (labelFor) text = (labelFor.textContent || '').trim();
    }
    if (!text) text = el.getAttribute('data-test-id') || el.getAttribute('data-selenium-test') || '';
    text = text.replace(/\s+/g, ' ');
    return text.length > 80 ? text.substring(0, 80) + '...' : text;
  };

  const seen = new Set();
  const candidates = [];
  for (const el of document.querySelectorAll(args.selector)) {
    const rect = el.getBoundingClientRect();
    if (!isRendered(el, rect, 1)) continue;
    const selector = buildSelector(el);
    if (seen.has(selector)) continue;
    seen.add(selector);

    const attributes = {};
    for (const name of ['href', 'type', 'name', 'role', 'placeholder', 'data-test-id', 'data-selenium-test', 'aria-label']) {
      const value = el.getAttribute(name);
      if (value && value.length < 100) attributes[name] = value;
    }
    candidates.push({
      priority: priority(el, rect),
      element: {
        tag: el.tagName.toLowerCase(),
        type: el.getAttribute('type') || undefined,
        text: labelOf(el),
        selector,
        boundingBox: {
          x: Math.round(rect.x),
          y: Math.round(rect.y),
          width: Math.round(rect.width),
          height: Math.round(rect.height),
        },
        attributes,
        isVisible: inViewport(rect),
        isEnabled: !el.disabled && el.getAttribute('aria-disabled') !== 'true',
      },
    });
  }
  candidates.sort((a, b) => b.priority - a.priority);
  return candidates.slice(0, args.maxElements).map((c, index) => ({ ...c.element, index }));
}
"""
)

COMPACT_SCAN_JS = (
    r"""
(args) => {
"""
    + SELECTOR_HELPERS_JS
    + r"""
  const clean = (value, max) => (value || '').replace(/\s+/g, ' ').trim().substring(0, max);
  const kindOf = (el) => {
    const tag = el.tagName.toLowerCase();
    const role = el.getAttribute('role');
    const type = (el.getAttribute('type') || '').toLowerCase();
    if (tag === 'button' || role === 'button') return 'btn';
    if (tag === 'a' || role === 'link') return 'link';
    if (tag === 'input') {
      if (type === 'checkbox') return 'checkbox';
      if (type === 'radio') return 'radio';
      if (type === 'submit' || type === 'button' || type === 'reset') return 'btn';
      return 'input';
    }
    if (tag === 'select') return 'select';
    if (tag === 'textarea' || el.getAttribute('contenteditable') === 'true' || role === 'textbox') return 'input';
    if (role === 'checkbox') return 'checkbox';
    if (role === 'radio') return 'radio';
    if (role === 'combobox') return 'select';
    if (role === 'tab') return 'tab';
    if (role === 'menuitem') return 'menu';
    return 'other';
  };
  const labelOf = (el) => {
    let text = '';
    if (el instanceof HTMLInputElement) {
      text = el.placeholder || el.value || el.name || '';
    } else if (el instanceof HTMLSelectElement) {
      text = (el.options[el.selectedIndex] || {}).text || '';
    } else {
      text = el.getAttribute('aria-label') || el.getAttribute('title') || el.textContent || '';
    }
    return clean(text, 50);
  };
  const bucketOf = {
    btn: 'buttons', link: 'links', input: 'inputs', select: 'inputs', checkbox: 'inputs', radio: 'inputs',
  };

  const buckets = { buttons: [[], []], links: [[], []], inputs: [[], []], other: [[], []] };
  const seen = new Set();
  let scanned = 0;
  for (const el of document.querySelectorAll(args.selector)) {
    if (scanned >= args.scanLimit) break;
    const rect = el.getBoundingClientRect();
    if (!isRendered(el, rect, 5)) continue;
    const selector = buildSelector(el);
    if (seen.has(selector)) continue;
    seen.add(selector);
    scanned++;
    const kind = kindOf(el);
    const item = { s: selector, t: labelOf(el), k: kind };
    if (el.disabled === true || el.getAttribute('aria-disabled') === 'true') item.d = true;
    buckets[bucketOf[kind] || 'other'][inViewport(rect) ? 0 : 1].push(item);
  }

  const rowPatterns = {
    select: '[data-test-id="checkbox-select-row-{id}"]',
    preview: '[data-test-id="preview-{id}"]',
    click: '[data-test-id="row-{id}"] a',
  };
  const tables = [];
  for (const table of document.querySelectorAll('table')) {
    if (tables.length >= args.maxTables) break;
    const headers = [];
    let headerCells = table.querySelectorAll('thead th, thead td');
    if (!headerCells.length) {
      const firstRow = table.querySelector('tr');
      headerCells = firstRow ? firstRow.querySelectorAll('th') : [];
    }
    for (const th of headerCells) {
      if (th.getAttribute('data-selection-column')) continue;
      const text = clean(th.textContent, 30);
      if (text) headers.push(text);
    }
    let bodyRows = Array.from(table.querySelectorAll('tbody tr'));
    if (!bodyRows.length) bodyRows = Array.from(table.querySelectorAll('tr'));
    bodyRows = bodyRows.filter((row) => row.querySelector('td'));

    const rows = [];
    let hasRowIds = false;
    for (const row of bodyRows.slice(0, args.maxTableRows)) {
      const testId = row.getAttribute('data-test-id');
      const id = testId && testId.startsWith('row-') ? testId.substring(4) : null;
      if (id) hasRowIds = true;
      const cells = [];
      for (const cell of row.querySelectorAll('td')) {
        if (cell.getAttribute('data-selection-column')) continue;
        const link = cell.querySelector('a');
        cells.push(clean(link ? link.textContent : cell.textContent, 40) || '--');
      }
      if (cells.length) rows.push(id ? { id, cells } : { cells });
    }
    if (headers.length || rows.length) {
      const summary = { headers, rowCount: bodyRows.length, rows };
      if (hasRowIds) summary.patterns = rowPatterns;
      tables.push(summary);
    }
  }

  // Virtualised grids often render rows as divs tagged with row ids rather than <table>.
  if (!tables.length) {
    const rowEls = Array.from(document.querySelectorAll('[data-test-id^="row-"]'));
    const rows = [];
    for (const row of rowEls.slice(0, args.maxTableRows)) {
      const id = row.getAttribute('data-test-id').substring(4);
      const link = row.querySelector('a');
      const name = clean(link ? link.textContent : row.textContent, 60);
      if (name) rows.push(id ? { id, cells: [name] } : { cells: [name] });
    }
    if (rows.length) {
      tables.push({ headers: ['Name'], rowCount: rowEls.length, rows, patterns: rowPatterns });
    }
  }

  const lists = [];
  for (const list of document.querySelectorAll('ul, ol')) {
    if (lists.length >= args.maxLists) break;
    const rect = list.getBoundingClientRect();
    if (!isRendered(list, rect, 1)) continue;
    const items = Array.from(list.children).filter((c) => c.tagName === 'LI');
    if (items.length < 3) continue;
    const labels = items.slice(0, 5).map((li) => clean(li.textContent, 40)).filter(Boolean);
    if (!labels.length) continue;
    const more = items.length > labels.length ? ' ...' : '';
    lists.push(list.tagName.toLowerCase() + ' (' + items.length + ' items): ' + labels.join(' | ') + more);
  }

  let snippet = '';
  if (document.body) {
    const walker = document.createTreeWalker(document.body, NodeFilter.SHOW_TEXT, {
      acceptNode(node) {
        const parent = node.parentElement;
        if (!parent) return NodeFilter.FILTER_REJECT;
        const tag = parent.tagName.toLowerCase();
        if (tag === 'script' || tag === 'style' || tag === 'noscript') return NodeFilter.FILTER_REJECT;
        return NodeFilter.FILTER_ACCEPT;
      }
    });
    while (walker.nextNode() && snippet.length < args.maxSummaryChars) {
      const text = (walker.currentNode.textContent || '').trim();
      if (text) snippet += text + ' ';
    }
  }

  return {
    buttons: buckets.buttons[0].concat(buckets.buttons[1]),
    links: buckets.links[0].concat(buckets.links[1]),
    inputs: buckets.inputs[0].concat(buckets.inputs[1]),
    other: buckets.other[0].concat(buckets.other[1]),
    tables,
    lists,
    snippet: clean(snippet, args.maxSummaryChars),
  };
}
"""
)


def viewport_of(target: Target) -> Viewport:
    size = getattr(target, "viewport_size", None)
    if isinstance(size, dict) and size.get("width") and size.get("height"):
        return Viewport(width=int(size["width"]), height=int(size["height"]))
    return DEFAULT_FRAME_VIEWPORT


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}" if count == 1 else f"{count} {noun}s"


def compose_summary(title: str, url: str, raw: dict[str, Any], snippet: str) -> str:
    """One-paragraph description of the page for a model that has not seen it."""
    counts = [
        _plural(len(raw.get("buttons") or ()), "button"),
        _plural(len(raw.get("links") or ()), "link"),
        _plural(len(raw.get("inputs") or ()), "input"),
    ]
    other = len(raw.get("other") or ())
    if other:
        counts.append(_plural(other, "other control"))
    tables = raw.get("tables") or []
    if tables:
        rows = sum(int(t.get("rowCount", 0)) for t in tables)
        counts.append(f"{_plural(len(tables), 'table')} ({_plural(rows, 'row')})")
    lists = raw.get("lists") or []
    if lists:
        counts.append(_plural(len(lists), "list"))

    heading = f"Page '{title}'" if title else f"Page at {url}"
    text = f"{heading} has {', '.join(counts)}."
    if snippet:
        text += f" Text: {snippet}"
    return text


class PageStateExtractor:
    """Builds the full, lite and compact state tiers for a page or frame."""

    def __init__(
        self,
        options: PageStateOptions | None = None,
        budget: CompactBudget | None = None,
    ) -> None:
        self._options = options or PageStateOptions()
        self._budget = budget or CompactBudget()

    @property
    def options(self) -> PageStateOptions:
        return self._options

    async def full(self, target: Target, options: PageStateOptions | None = None) -> PageState:
        opts = options or self._options
        title, html, text, raw_elements = await asyncio.gather(
            target.title(),
            target.evaluate(FILTERED_HTML_JS, opts.max_html_length),
            target.evaluate(TEXT_CONTENT_JS, opts.max_text_length),
            target.evaluate(
                INTERACTIVE_ELEMENTS_JS,
                {"selector": INTERACTIVE_SELECTOR, "maxElements": opts.max_elements},
            ),
        )
        elements = [InteractiveElement.from_dict(item) for item in raw_elements or []]
        return PageState(
            url=target.url,
            title=title,
            html=html or "",
            text_content=text or "",
            interactive_elements=elements[: opts.max_elements],
            viewport=viewport_of(target),
        )

    async def lite(self, target: Target) -> PageStateLite:
        title = await target.title()
        count = await target.evaluate(ELEMENT_COUNT_JS, INTERACTIVE_SELECTOR)
        return PageStateLite(
            url=target.url,
            title=title,
            element_count=int(count or 0),
            viewport=viewport_of(target),
        )

    async def compact(
        self,
        target: Target,
        options: PageStateOptions | None = None,
        budget: CompactBudget | None = None,
    ) -> PageStateCompact:
        opts = options or self._options
        budget = budget or self._budget
        title = await target.title()
        raw = await target.evaluate(
            COMPACT_SCAN_JS,
            {
                "selector": INTERACTIVE_SELECTOR,
                "scanLimit": max(opts.max_elements * 4, 200),
                "maxTables": budget.max_tables,
                "maxTableRows": budget.max_table_rows,
                "maxLists": budget.max_lists,
                "maxSummaryChars": budget.max_summary_chars,
            },
        )
        raw = raw or {}
        state = PageStateCompact(
            url=target.url,
            title=title,
            buttons=[CompactElement.from_dict(item) for item in raw.get("buttons") or ()],
            links=[CompactElement.from_dict(item) for item in raw.get("links") or ()],
            inputs=[CompactElement.from_dict(item) for item in raw.get("inputs") or ()],
            other=[CompactElement.from_dict(item) for item in raw.get("other") or ()],
            tables=[TableSummary.from_dict(item) for item in raw.get("tables") or ()],
            lists=[str(item) for item in raw.get("lists") or ()],
            summary=compose_summary(title, target.url, raw, str(raw.get("snippet") or "")),
        )
        outcome = CompactionManager(budget).enforce(state, max_elements=opts.max_elements)
        if outcome.trimmed:
            logger.debug(
                "Compact state trimmed to ~%s tokens: %s",
                outcome.total_tokens,
                ", ".join(outcome.notes),
            )
        return state
