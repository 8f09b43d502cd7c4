import re
from typing import List
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

YOUTUBE_HOSTS = {
    "youtube.com",
    "www.youtube.com",
    "m.youtube.com",
    "music.youtube.com",
    "youtu.be",
    "www.youtu.be",
}

VALID_LINK_RE = re.compile(
    r"^(https?://)?"
    r"(((www|m|music)\.)?youtube\.com/watch\?([^#\s]*&)?v=[\w-]+"
    r"|(www\.)?youtu\.be/[\w-]+)"
)

SHORT_LINK_PREFIX = "https://youtu.be/"
VIDEO_ID_LENGTH = 11

SHORT_LINK_RE = re.compile(r"https://youtu\.be/")
STANDARD_LINK_RE = re.compile(
    r"(https://www\.youtube\.com/(?:watch\?v=|embed/)[a-zA-Z0-9_-]{11}"
    r"|https://youtu\.be/[a-zA-Z0-9_-]{11})"
)


def is_valid_youtube_link(url: str) -> bool:
    if not url or not isinstance(url, str):
        return False
    return VALID_LINK_RE.match(url.strip()) is not None


def normalize_youtube_url(url: str, keep_time: bool = True) -> str | None:
    """
    Normalize a YouTube URL:
    - Convert youtu.be/ID and /shorts/ID to https://www.youtube.com/watch?v=ID
    - Keep only relevant params: v, and t unless keep_time is False
    - Return None if it is not a direct video link.
    """
    raw = url.strip()
    if "://" not in raw:
        raw = "https://" + raw
    parsed = urlparse(raw)
    host = (parsed.hostname or "").lower()

    if host not in YOUTUBE_HOSTS:
        return None

    qs = parse_qs(parsed.query)

    if "youtu.be" in host:
        video_id = parsed.path.lstrip("/").split("/")[0]
        if not video_id:
            return None
        qs = {**qs, "v": [video_id]}
    elif parsed.path.startswith("/shorts/"):
        video_id = parsed.path.split("/shorts/")[1].split("/")[0]
        qs = {"v": [video_id], **qs}

    if "v" not in qs:
        # channel, playlist or some other page
        return None

    allowed = ("v", "t") if keep_time else ("v",)
    filtered_qs = {}
    for key in allowed:
        value = qs.get(key)
        if value:
            filtered_qs[key] = [value[0]]

    return urlunparse((
        "https",
        "www.youtube.com",
        "/watch",
        "",
        urlencode(filtered_qs, doseq=True),
        "",
    ))


def extract_video_id(url: str) -> str | None:
    normalized = normalize_youtube_url(url, keep_time=False)
    if not normalized:
        return None
    vals = parse_qs(urlparse(normalized).query).get("v")
    if not vals:
        return None
    return vals[0]


def merge_key(url: str) -> str:
    """Key used to decide whether two links point at the same video.

    YouTube links collapse to their canonical watch URL; anything else is
    compared with its query string and fragment removed.
    """
    canonical = normalize_youtube_url(url, keep_time=False)
    if canonical:
        return canonical
    parsed = urlparse(url.strip())
    return urlunparse((parsed.scheme, parsed.netloc, parsed.path, parsed.params, "", ""))


def extract_links_from_text(text: str) -> List[str]:
    """Pull every YouTube link out of a blob of pasted text.

    Short links are often pasted back to back with no separator, so those are
    cut at a fixed length first. Standard watch/embed links are only looked for
    when no short link was found.
    """
    found: List[str] = []

    for match in SHORT_LINK_RE.finditer(text):
        start = match.start()
        candidate = text[start:start + len(SHORT_LINK_PREFIX) + VIDEO_ID_LENGTH]
        if is_valid_youtube_link(candidate):
            found.append(candidate)

    if not found:
        found = [m.group(0) for m in STANDARD_LINK_RE.finditer(text)]

    return list(dict.fromkeys(found))
