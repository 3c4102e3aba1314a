"""
Video reference helpers.

Modules carry a YouTube watch link. These helpers pull the video id out
of the common URL shapes so links can be validated and embedded.
"""

import re
from typing import Optional


YOUTUBE_ID_LENGTH = 11

_YOUTUBE_URL = re.compile(r"^.*(youtu\.be/|v/|u/\w/|embed/|watch\?v=|&v=)([^#&?]*).*")


def youtube_video_id(url: Optional[str]) -> Optional[str]:
    """
    Extract the video id from a YouTube URL.

    Accepts watch, youtu.be, embed, /v/ and /u/ links. Returns None when
    the URL has no id of the expected length.
    """
    if not url:
        return None
    match = _YOUTUBE_URL.match(url)
    if match and len(match.group(2)) == YOUTUBE_ID_LENGTH:
        return match.group(2)
    return None


def embed_url(video_id: str) -> str:
    return f"https://www.youtube.com/embed/{video_id}?autoplay=0&modestbranding=1&rel=0&controls=1"
