"""Percona certified image lists, fetched from the operator release notes."""

from __future__ import annotations

import http.client
import re
import urllib.error
import urllib.request

_RELEASE_NOTES = "https://docs.percona.com/percona-operator-for-mysql/pxc/ReleaseNotes/"
_FETCH_TIMEOUT = 45.0

_IMAGE_RE = re.compile(r"\b(percona/[a-z0-9./-]+:[a-z0-9._-]+)\b", re.IGNORECASE | re.ASCII)

_SECTION_KEYS = (
    'id="percona-certified-images"',
    "id='percona-certified-images'",
    'name="percona-certified-images"',
)


def sanitize_cr_version(version: str) -> str:
    """Keep only digits and dots of a crVersion, for use in a URL."""
    return "".join(ch for ch in version.strip() if ch == "." or "0" <= ch <= "9")


def _release_notes_page(version: str) -> str:
    return f"{_RELEASE_NOTES}Kubernetes-Operator-for-PXC-RN{version}.html"


def certified_doc_url(version: str) -> str:
    """Link to the certified-images section of the release notes for ``version``."""
    cleaned = sanitize_cr_version(version)
    if not cleaned:
        return _RELEASE_NOTES
    return _release_notes_page(cleaned) + "#percona-certified-images"


def certified_section_suffix(html: str) -> str:
    """Return the HTML from the certified-images anchor onward, or the whole page."""
    lowered = html.lower()
    for key in _SECTION_KEYS:
        index = lowered.find(key)
        if index >= 0:
            return html[index:]
    index = lowered.find("percona certified images")
    if index >= 0:
        return html[index:]
    return html


def normalize_oci_image_ref(image: str) -> str:
    """Lower-case an image reference, dropping ``docker.io/`` and any digest."""
    image = image.strip().lower()
    if not image:
        return ""
    image = image.removeprefix("docker.io/")
    image = image.partition("@")[0]
    return image.strip()


def extract_certified_refs(html: str) -> frozenset[str]:
    """Collect normalised ``percona/...:tag`` references from the certified section."""
    section = certified_section_suffix(html)
    refs = (normalize_oci_image_ref(match) for match in _IMAGE_RE.findall(section))
    return frozenset(ref for ref in refs if ref)


def fetch_certified_image_refs(version: str) -> frozenset[str]:
    """Download the release notes for ``version`` and return its certified images.

    Raises ValueError for an unusable version or a page without image references,
    and OSError when the page cannot be fetched.
    """
    cleaned = sanitize_cr_version(version)
    if not cleaned:
        raise ValueError("invalid or empty crVersion for release notes URL")
    page = _release_notes_page(cleaned)
    try:
        with urllib.request.urlopen(page, timeout=_FETCH_TIMEOUT) as response:
            status = getattr(response, "status", 200)
            if status != 200:
                reason = getattr(response, "reason", "")
                raise OSError(f"GET {page}: {status} {reason}".rstrip())
            body = response.read()
    except urllib.error.HTTPError as exc:
        raise OSError(f"GET {page}: {exc.code} {exc.reason}") from exc
    except (OSError, http.client.HTTPException) as exc:
        if isinstance(exc, OSError) and str(exc).startswith(f"GET {page}:"):
            raise
        raise OSError(f"GET {page}: {exc}") from exc
    html = body.decode("utf-8", errors="replace")
    refs = extract_certified_refs(html)
    if not refs:
        raise ValueError(
            "no percona/… image references found under certified images "
            "(docs layout may have changed)"
        )
    return refs


class CertifiedImageCache:
    """Memoises certified image lists per crVersion so each is fetched at most once."""

    def __init__(self, enabled: bool) -> None:
        self.enabled = enabled
        self._store: dict[str, tuple[frozenset[str] | None, str, str]] = {}

    def lookup(self, cr_version: str) -> tuple[frozenset[str] | None, str, str]:
        """Return ``(refs, doc_url, error)``; ``refs`` is None whenever ``error`` is set."""
        version = cr_version.strip()
        doc_url = certified_doc_url(version)
        if not version:
            return None, doc_url, "no spec.crVersion on the Custom Resource"
        if not self.enabled:
            return None, doc_url, "certified image fetch disabled (-certified-images=false)"
        cached = self._store.get(version)
        if cached is not None:
            return cached
        try:
            entry = (fetch_certified_image_refs(version), doc_url, "")
        except (OSError, ValueError) as exc:
            entry = (None, doc_url, str(exc))
        self._store[version] = entry
        return entry