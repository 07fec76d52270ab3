"""In-page extraction of listing cards and pagination controls.

The scripts run inside the rendered document and return plain JSON; the
Python side only coerces that payload, tolerating anything malformed.
"""
from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Any
from urllib.parse import parse_qs, urlparse

from .config import SelectorConfig
from .models import NextControl, PageExtraction, PaginationLink, RawItemFragment
from .normalize import parse_number
from .surface import RenderingSurface

logger = logging.getLogger(__name__)

NEXT_MARKER = "data-onsale-next"
PAGE_MARKER = "data-onsale-page"

_HELPERS = """
  const normalize = (value) => (value == null ? null : (String(value).replace(/\\s+/g, ' ').trim() || null));
  const isVisible = (element) => {
    if (!element || !element.getBoundingClientRect) return false;
    const style = window.getComputedStyle(element);
    const rect = element.getBoundingClientRect();
    return rect.width > 0 && rect.height > 0 && style.visibility !== 'hidden'
      && style.display !== 'none' && Number.parseFloat(style.opacity || '1') > 0;
  };
  const firstText = (root, selectors) => {
    for (const selector of selectors) {
      for (const node of root.querySelectorAll(selector)) {
        const text = normalize(node.textContent);
        if (text) return text;
      }
    }
    return null;
  };
  const visibleNodes = (root, selectors) => {
    const seen = new Set();
    const nodes = [];
    for (const selector of selectors) {
      for (const node of root.querySelectorAll(selector)) {
        if (seen.has(node) || !isVisible(node)) continue;
        seen.add(node);
        nodes.push(node);
      }
    }
    return nodes;
  };
  const activePage = (selectors) => {
    for (const node of visibleNodes(document, selectors)) {
      const match = (normalize(node.textContent) || '').match(/\\d+/);
      if (match) return Number.parseInt(match[0], 10);
    }
    return null;
  };
"""

EXTRACT_SCRIPT = (
    """
({ s, pageParam, nextMarker, pageMarker }) => {
"""
    + _HELPERS
    + """
  const leafTexts = (root, selectors) => {
    const matched = new Set();
    for (const selector of selectors) {
      root.querySelectorAll(selector).forEach((node) => matched.add(node));
    }
    const texts = [];
    for (const node of matched) {
      const nested = Array.from(matched).some((other) => other !== node && node.contains(other));
      if (nested) continue;
      const text = normalize(node.textContent);
      if (text) texts.push(text);
    }
    return texts;
  };
  const isDisabled = (node) => Boolean(
    node.disabled
    || node.getAttribute('aria-disabled') === 'true'
    || node.classList.contains('disabled')
    || (node.parentElement && node.parentElement.classList.contains('disabled'))
  );

  let scope = document;
  for (const selector of s.container) {
    const container = document.querySelector(selector);
    if (container) { scope = container; break; }
  }
  let cards = [];
  for (const selector of s.cards) {
    cards = Array.from(scope.querySelectorAll(selector)).filter(isVisible);
    if (cards.length > 0) break;
  }

  const parseCard = (card) => {
    let sku = null;
    for (const attr of s.sku_attributes) {
      const holder = card.hasAttribute(attr) ? card : card.querySelector(`[${attr}]`);
      sku = holder ? normalize(holder.getAttribute(attr)) : null;
      if (sku) break;
    }
    let link = null;
    for (const selector of s.link) {
      const node = card.querySelector(selector);
      link = node ? node.getAttribute('href') : null;
      if (link) break;
    }
    let image = null;
    const img = card.querySelector('img');
    if (img) {
      for (const attr of s.image_attributes) {
        image = img.getAttribute(attr);
        if (image) break;
      }
    }
    return {
      name: firstText(card, s.name),
      brand: firstText(card, s.brand),
      sku,
      text: normalize(card.innerText || card.textContent || ''),
      priceTexts: leafTexts(card, s.price),
      regularTexts: leafTexts(card, s.regular_price),
      unitLabel: firstText(card, s.unit_label),
      unitPrice: firstText(card, s.unit_price),
      link,
      image,
      category: normalize(card.getAttribute('data-category')) || firstText(card, s.category),
      error: null,
    };
  };
  const results = cards.map((card) => {
    try {
      return parseCard(card);
    } catch (error) {
      return { error: String((error && error.message) || error) };
    }
  });

  document.querySelectorAll(`[${pageMarker}]`).forEach((node) => node.removeAttribute(pageMarker));
  document.querySelectorAll(`[${nextMarker}]`).forEach((node) => node.removeAttribute(nextMarker));

  const linkNodes = visibleNodes(document, s.pagination_links);
  const paginationLinks = linkNodes.map((node) => {
    const href = node.getAttribute('href');
    const text = normalize(node.textContent);
    let page = null;
    if (href) {
      try {
        const value = new URL(href, window.location.href).searchParams.get(pageParam);
        page = value && /^\\d+$/.test(value) ? Number.parseInt(value, 10) : null;
      } catch (error) {
        page = null;
      }
    }
    if (page === null && text && /^\\d+$/.test(text)) page = Number.parseInt(text, 10);
    if (page !== null) node.setAttribute(pageMarker, String(page));
    return { href, text, page, disabled: isDisabled(node) };
  });

  let nextNode = visibleNodes(document, s.next_control)[0] || null;
  if (!nextNode && s.next_vocabulary.length > 0) {
    const words = s.next_vocabulary.map((word) => word.toLowerCase());
    // carousels and sliders use the same words, so stay inside the pager
    const roots = new Set(visibleNodes(document, s.pagination_container));
    for (const node of linkNodes) {
      const root = node.closest('nav, ul, ol') || node.parentElement;
      if (root && root !== document.body) roots.add(root);
    }
    const candidates = [];
    for (const root of roots) {
      for (const node of visibleNodes(root, ['a', 'button', '[role="button"]'])) {
        if (!candidates.includes(node)) candidates.push(node);
      }
    }
    nextNode = candidates.find((node) => {
      const label = `${node.textContent || ''} ${node.getAttribute('aria-label') || ''}`.toLowerCase();
      if (label.trim().length > 40) return false;
      const tokens = label.split(/[^a-zà-ÿ]+/).filter(Boolean);
      return words.some((word) => tokens.includes(word));
    }) || null;
  }
  let next = null;
  if (nextNode) {
    nextNode.setAttribute(nextMarker, '1');
    next = { href: nextNode.getAttribute('href'), disabled: isDisabled(nextNode), clickable: true };
  } else {
    const headLink = document.querySelector('link[rel="next"]');
    if (headLink && headLink.getAttribute('href')) {
      next = { href: headLink.getAttribute('href'), disabled: false, clickable: false };
    }
  }

  const bodyText = normalize(document.body ? document.body.innerText : '') || '';
  const emptyMatch = s.empty_state_pattern ? bodyText.match(new RegExp(s.empty_state_pattern, 'i')) : null;
  return {
    results,
    paginationLinks,
    next,
    activePage: activePage(s.active_page),
    breadcrumb: firstText(document, s.breadcrumb),
    emptyStateText: firstText(document, s.empty_state) || (emptyMatch ? emptyMatch[1] : null),
    resultsCountText: firstText(document, s.results_count),
    visibleCardCount: cards.length,
    title: document.title || '',
    bodyPreview: bodyText.slice(0, 1000),
  };
}
"""
)

ACTIVE_PAGE_SCRIPT = (
    """
({ selectors }) => {
"""
    + _HELPERS
    + """
  return activePage(selectors);
}
"""
)

COUNT_SCRIPT = """
(selectors) => selectors.map((selector) => {
  try {
    return document.querySelectorAll(selector).length;
  } catch (error) {
    return -1;
  }
})
"""


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _texts(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(entry) for entry in value if entry not in (None, "")]


def _int_or_none(value: Any) -> int | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def coerce_fragment(raw: Any) -> RawItemFragment:
    if not isinstance(raw, dict):
        return RawItemFragment(error=f"Unexpected card payload: {type(raw).__name__}")
    if raw.get("error"):
        return RawItemFragment(error=str(raw["error"]))
    return RawItemFragment(
        name=_text(raw.get("name")),
        brand=_text(raw.get("brand")),
        sku=_text(raw.get("sku")),
        card_text=_text(raw.get("text")),
        price_texts=_texts(raw.get("priceTexts")),
        regular_texts=_texts(raw.get("regularTexts")),
        unit_label=_text(raw.get("unitLabel")),
        unit_price_text=_text(raw.get("unitPrice")),
        link=_text(raw.get("link")),
        image=_text(raw.get("image")),
        category=_text(raw.get("category")),
    )


def _coerce_links(raw: Any) -> list[PaginationLink]:
    links: list[PaginationLink] = []
    if not isinstance(raw, list):
        return links
    for item in raw:
        if not isinstance(item, dict):
            continue
        links.append(
            PaginationLink(
                href=_text(item.get("href")),
                text=_text(item.get("text")),
                page=_int_or_none(item.get("page")),
                disabled=bool(item.get("disabled")),
            )
        )
    return links


def _coerce_next(raw: Any) -> NextControl | None:
    if not isinstance(raw, dict):
        return None
    return NextControl(
        href=_text(raw.get("href")),
        disabled=bool(raw.get("disabled")),
        clickable=bool(raw.get("clickable", True)),
    )


def coerce_extraction(payload: Any) -> PageExtraction:
    if not isinstance(payload, dict):
        raise ValueError(f"Unexpected extraction payload: {type(payload).__name__}")
    fragments = [coerce_fragment(raw) for raw in payload.get("results") or []]
    broken = sum(1 for fragment in fragments if fragment.error)
    if broken:
        logger.warning("%d of %d cards could not be parsed", broken, len(fragments))
    return PageExtraction(
        fragments=fragments,
        pagination_links=_coerce_links(payload.get("paginationLinks")),
        next_control=_coerce_next(payload.get("next")),
        active_page=_int_or_none(payload.get("activePage")),
        breadcrumb=_text(payload.get("breadcrumb")),
        empty_state_text=_text(payload.get("emptyStateText")),
        results_count_text=_text(payload.get("resultsCountText")),
        visible_card_count=_int_or_none(payload.get("visibleCardCount")) or 0,
        title=str(payload.get("title") or ""),
        body_preview=str(payload.get("bodyPreview") or ""),
    )


async def extract_page(surface: RenderingSurface, selectors: SelectorConfig, page_param: str) -> PageExtraction:
    payload = await surface.evaluate(
        EXTRACT_SCRIPT,
        {"s": asdict(selectors), "pageParam": page_param, "nextMarker": NEXT_MARKER, "pageMarker": PAGE_MARKER},
    )
    return coerce_extraction(payload)


def reports_empty(extraction: PageExtraction) -> bool:
    """Empty-state text counts only while no results counter says otherwise."""
    if not extraction.empty_state_text:
        return False
    count = parse_number(extraction.results_count_text)
    if count:
        logger.debug(
            "Ignoring empty-state text %r; results counter reads %r",
            extraction.empty_state_text,
            extraction.results_count_text,
        )
        return False
    return True


def page_from_url(url: str, page_param: str) -> int | None:
    values = parse_qs(urlparse(url).query).get(page_param, [])
    for value in values:
        if value.isdigit():
            return int(value)
    return None


async def read_active_page(surface: RenderingSurface, selectors: SelectorConfig, page_param: str) -> int | None:
    active = _int_or_none(await surface.evaluate(ACTIVE_PAGE_SCRIPT, {"selectors": selectors.active_page}))
    if active is not None:
        return active
    return page_from_url(surface.url, page_param)


def detect_block(title: str, body_preview: str, status: int | None = None) -> str | None:
    """Classify a rate-limit or bot-challenge page, ``None`` for a normal page."""
    title = title.strip().lower()
    body = body_preview.lower()
    if (
        status == 429
        or "error 1015" in title
        or "rate limited" in title
        or "error 1015" in body
        or "you are being rate limited" in body
    ):
        return "rate-limited"
    if (
        status == 403
        or "just a moment" in title
        or "security verification" in body
        or "cloudflare" in body
        or "captcha" in body
    ):
        return "challenge"
    return None


async def count_selector_matches(surface: RenderingSurface, selectors: list[str]) -> dict[str, int]:
    counts = await surface.evaluate(COUNT_SCRIPT, selectors)
    if not isinstance(counts, list):
        return {selector: 0 for selector in selectors}
    return {selector: _int_or_none(count) or 0 for selector, count in zip(selectors, counts)}
