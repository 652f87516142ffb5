import hashlib
import re
from urllib.parse import parse_qsl, urlencode, urljoin, urlparse, urlunparse

from bs4 import BeautifulSoup

MAX_HASH_CHARS = 20000

_DROP_PARAMS = {
    "fbclid",
    "gclid",
    "dclid",
    "msclkid",
    "mc_cid",
    "mc_eid",
    "igshid",
    "ref",
    "ref_src",
}

BLACKLISTED_HOSTS = ("instagram.com", "facebook.com", "twitter.com", "x.com")

_BLOCK_MARKERS = [
    "sorry, you have been blocked",
    "access denied",
    "attention required",
    "cf-browser-verification",
    "challenge-platform",
    "bot detection",
]

GENERIC_PAGE_KEYWORDS = [
    "privacy policy",
    "terms & conditions",
    "terms and conditions",
    "contact us",
    "about us",
    "imprint",
    "legal notice",
    "cookie policy",
    "cookie settings",
    "cookie preferences",
    "data protection",
    "disclaimer",
    "sitemap",
    "accessibility",
    "skip to main content",
    "create alert",
    "log in",
    "login",
    "sign in",
    "register",
]

_OPPORTUNITY_WORDS = re.compile(
    r"phd|ph\.d|doctoral|doctorate|position|studentship|fellowship|professor|lecturer|"
    r"research|postdoc|post-doctoral|scholarship|vacancy|opening|job|role|engineer|"
    r"developer|analyst|scientist|manager|intern",
    re.I,
)


def canonicalize_url(url: str, extra_drop: list[str] | None = None) -> str:
    if not url:
        return url
    url = url.strip()
    parsed = urlparse(url)
    scheme = (parsed.scheme or "https").lower()
    netloc = (parsed.netloc or "").lower()
    path = parsed.path or ""
    if len(path) > 1 and path.endswith("/"):
        path = path.rstrip("/") or "/"
    query_items = []
    for k, v in parse_qsl(parsed.query, keep_blank_values=True):
        if k.lower().startswith("utm_"):
            continue
        if k.lower() in _DROP_PARAMS:
            continue
        if extra_drop and k.lower() in extra_drop:
            continue
        query_items.append((k, v))
    query = urlencode(query_items, doseq=True)
    return urlunparse((scheme, netloc, path, "", query, ""))


def host_of(url: str) -> str | None:
    try:
        host = urlparse(url).hostname
    except ValueError:
        return None
    if not host:
        return None
    host = host.lower()
    return host[4:] if host.startswith("www.") else host


def is_blacklisted_host(url: str) -> bool:
    host = host_of(url)
    if not host:
        return False
    return any(host == d or host.endswith(f".{d}") for d in BLACKLISTED_HOSTS)


def resolve_url(base: str, href: str) -> str | None:
    href = (href or "").strip()
    if not href or href.startswith(("mailto:", "javascript:", "tel:", "#")):
        return None
    try:
        resolved = urljoin(base, href)
    except ValueError:
        return None
    if urlparse(resolved).scheme not in ("http", "https"):
        return None
    return resolved


def compute_content_hash(text: str) -> str:
    return hashlib.sha256((text or "").encode("utf-8")).hexdigest()


def looks_blocked(text: str) -> bool:
    low = (text or "").lower()
    if any(m in low for m in _BLOCK_MARKERS):
        return True
    if "just a moment" in low and "cloudflare" in low:
        return True
    return "verify you are human" in low and "security" in low


def looks_like_login_wall(text: str) -> bool:
    low = (text or "").lower()
    wants_login = "sign in" in low or "log in" in low or "login" in low
    return wants_login and ("password" in low or "account" in low)


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "html.parser")


def extract_h1(html: str) -> str | None:
    h1 = _soup(html).find("h1")
    if not h1:
        return None
    text = " ".join(h1.get_text(" ", strip=True).split())
    return text or None


def extract_text(html: str) -> str:
    soup = _soup(html)
    for tag in soup(["script", "style", "noscript", "svg"]):
        tag.decompose()
    text = soup.get_text(" ", strip=True)
    return " ".join(text.split())


def extract_anchors(html: str, base_url: str) -> list[tuple[str, str]]:
    """(absolute url, normalised anchor text) for every usable <a href>, in page order."""
    out: list[tuple[str, str]] = []
    for a in _soup(html).find_all("a"):
        resolved = resolve_url(base_url, a.get("href") or "")
        if not resolved:
            continue
        text = " ".join(a.get_text(" ", strip=True).split())
        out.append((resolved, text))
    return out


def extract_links(html: str, base_url: str) -> list[str]:
    return [href for href, _ in extract_anchors(html, base_url)]


def take_words(text: str, max_words: int) -> str:
    return " ".join((text or "").split()[:max_words])


def is_generic_page_title(title: str) -> bool:
    text = (title or "").strip().lower()
    if not text:
        return True
    if any(kw in text for kw in GENERIC_PAGE_KEYWORDS):
        return True
    if _OPPORTUNITY_WORDS.search(text):
        return False
    # short titles without opportunity words are filters, regions or UI labels
    compact = re.sub(r"[^a-z0-9]+", "", text)
    return len(compact) <= 12 or len(text.split()) <= 3
