import math
import random
from typing import List, Optional, Sequence, Set, Tuple

from pydantic import BaseModel, Field

from .models import LinkRecord, utc_now_iso
from .youtube_utils import SHORT_LINK_PREFIX, VIDEO_ID_LENGTH, extract_links_from_text, is_valid_youtube_link


class AppState(BaseModel):
    links: List[LinkRecord] = Field(default_factory=list)
    selected: Set[str] = Field(default_factory=set)
    current_page: int = 1
    items_per_page: int = 10


class AddReport(BaseModel):
    added: List[str] = Field(default_factory=list)
    invalid: List[str] = Field(default_factory=list)
    duplicates: List[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return bool(self.added)

    @property
    def clean(self) -> bool:
        """Everything pasted was added; the input can be cleared."""
        return bool(self.added) and not self.invalid and not self.duplicates

    def message(self) -> str:
        parts = []
        if self.added:
            parts.append(f"Added {len(self.added)} new link(s)")
        if self.invalid:
            parts.append(f"{len(self.invalid)} invalid link(s) not added")
        if self.duplicates:
            parts.append(f"{len(self.duplicates)} duplicate link(s) not added")
        return ", ".join(parts) or "No links found"


def _candidates(text: str) -> List[str]:
    found: List[str] = []
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        in_line = extract_links_from_text(line)
        found.extend(in_line or [line])
    return found


def add_links_from_text(state: AppState, text: str, now: Optional[str] = None) -> Tuple[AppState, AddReport]:
    existing = {l.url for l in state.links}
    report = AddReport()
    for link in dict.fromkeys(_candidates(text)):
        if not is_valid_youtube_link(link):
            report.invalid.append(link)
        elif link in existing:
            report.duplicates.append(link)
        else:
            report.added.append(link)

    if not report.added:
        return state, report

    stamp = now or utc_now_iso()
    new_links = [LinkRecord(url=url, timestamp=stamp) for url in report.added]
    return state.model_copy(update={"links": state.links + new_links}), report


def format_links(text: str) -> List[str]:
    """Extract links from pasted text, one canonical link per entry."""
    links = extract_links_from_text(text)
    if not links:
        links = []
        for line in text.splitlines():
            line = line.strip()
            if not line:
                continue
            in_line = extract_links_from_text(line)
            if in_line:
                links.extend(in_line)
            elif is_valid_youtube_link(line):
                links.append(line)

    formatted = []
    for link in dict.fromkeys(links):
        if link.startswith(SHORT_LINK_PREFIX):
            link = link[:len(SHORT_LINK_PREFIX) + VIDEO_ID_LENGTH]
        formatted.append(link)
    return list(dict.fromkeys(formatted))


def total_pages(state: AppState) -> int:
    return max(1, math.ceil(len(state.links) / state.items_per_page))


def go_to_page(state: AppState, page: int) -> AppState:
    page = min(max(1, page), total_pages(state))
    return state.model_copy(update={"current_page": page})


def page_links(state: AppState) -> List[LinkRecord]:
    start = (state.current_page - 1) * state.items_per_page
    return state.links[start:start + state.items_per_page]


def _with_links(state: AppState, links: List[LinkRecord]) -> AppState:
    urls = {l.url for l in links}
    updated = state.model_copy(update={"links": links, "selected": state.selected & urls})
    return go_to_page(updated, updated.current_page)


def remove_link(state: AppState, key: str) -> AppState:
    return _with_links(state, [l for l in state.links if l.url != key and l.id != key])


def remove_page(state: AppState) -> AppState:
    on_page = {l.url for l in page_links(state)}
    return _with_links(state, [l for l in state.links if l.url not in on_page])


def clear(state: AppState) -> AppState:
    return state.model_copy(update={"links": [], "selected": set(), "current_page": 1})


def toggle_selected(state: AppState, url: str) -> AppState:
    selected = set(state.selected)
    if url in selected:
        selected.discard(url)
    else:
        selected.add(url)
    return state.model_copy(update={"selected": selected})


def toggle_select_page(state: AppState) -> AppState:
    """Select every link on the current page, or deselect them if all already are."""
    on_page = {l.url for l in page_links(state)}
    if on_page and on_page <= state.selected:
        selected = state.selected - on_page
    else:
        selected = state.selected | on_page
    return state.model_copy(update={"selected": selected})


def selected_links(state: AppState) -> List[str]:
    return [l.url for l in state.links if l.url in state.selected]


def random_recommendations(
    links: Sequence[LinkRecord],
    count: int = 5,
    rng: Optional[random.Random] = None,
) -> List[LinkRecord]:
    rng = rng or random.Random()
    return rng.sample(list(links), min(count, len(links)))
