"""Per-creative ad copy and destination links."""

from __future__ import annotations

from dataclasses import dataclass

from draft import CreativeDraft, GlobalCopy


@dataclass(frozen=True)
class ResolvedCopy:
    primary_text: str
    headline: str
    description: str
    link_url: str
    cta: str


def append_tracking_params(url: str, template: str | None) -> str:
    """Append URL parameters (e.g. 'utm_source=fb') to a destination URL.

    The template is appended as-is, without encoding.
    """
    if not url:
        return ""
    tmpl = (template or "").strip()
    if not tmpl:
        return url
    tmpl = tmpl.lstrip("?&")
    if not tmpl:
        return url
    if url.endswith(("?", "&")):
        return url + tmpl
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{tmpl}"


def resolve_copy(
    creative: CreativeDraft,
    global_copy: GlobalCopy,
    destination_url: str,
    tracking_template: str | None = "",
) -> ResolvedCopy:
    if creative.use_custom_copy:
        link = append_tracking_params(creative.link_url or destination_url, tracking_template)
        return ResolvedCopy(
            primary_text=creative.primary_text,
            headline=creative.headline,
            description=creative.description,
            link_url=link,
            cta=creative.cta,
        )
    return ResolvedCopy(
        primary_text=global_copy.primary_text,
        headline=global_copy.headline,
        description=global_copy.description,
        link_url=append_tracking_params(destination_url, tracking_template),
        cta=global_copy.cta,
    )
