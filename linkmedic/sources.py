"""
Video descriptions and the affiliate links inside them
"""

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from bs4 import BeautifulSoup
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from .errors import FetchError
from .urls import is_marketplace_url


logger = logging.getLogger(__name__)

URL_RE = re.compile(r'https?://[^\s<>"\']+', re.IGNORECASE)
TRAILING_PUNCTUATION = '.,;:!?)]}\'"'
VIDEO_ID_PATTERNS = [
    re.compile(r'(?:youtube\.com/watch\?(?:.*&)?v=|youtu\.be/)([a-zA-Z0-9_-]{11})'),
    re.compile(r'youtube\.com/(?:embed|shorts|live)/([a-zA-Z0-9_-]{11})'),
]
MIN_CONTEXT_LENGTH = 5
MAX_CONTEXT_LENGTH = 50


@dataclass
class Video:
    url: str
    title: str
    description: str = ''
    view_count: Optional[int] = None
    published_at: Optional[str] = None
    links: List[Dict[str, str]] = field(default_factory=list)


def extract_video_id(url: str) -> Optional[str]:
    """Extract YouTube video ID from URL"""
    for pattern in VIDEO_ID_PATTERNS:
        match = pattern.search(url or '')
        if match:
            return match.group(1)
    return None


def link_context(text: str, url: str) -> Optional[str]:
    """The description line carrying a URL, with every URL removed"""
    for line in (text or '').split('\n'):
        if url in line:
            cleaned = URL_RE.sub('', line).strip(' \t-:|•>')
            if len(cleaned) > MIN_CONTEXT_LENGTH:
                return cleaned[:MAX_CONTEXT_LENGTH].strip()
            return None
    return None


def extract_affiliate_links(text: str) -> List[Dict[str, str]]:
    """Marketplace links in a description, in order of appearance, without repeats"""
    links = []
    seen = set()
    for match in URL_RE.finditer(text or ''):
        url = match.group(0).rstrip(TRAILING_PUNCTUATION)
        if url in seen or not is_marketplace_url(url):
            continue
        seen.add(url)
        links.append({
            'url': url,
            'title': link_context(text, url) or 'Link',
        })
    return links


class VideoSource:
    """Fetch video metadata through the YouTube Data API, or the watch page without a key"""

    def __init__(self, fetcher, api_key: Optional[str] = None, youtube_service=None):
        self.fetcher = fetcher
        self.youtube_service = youtube_service
        if self.youtube_service is None and api_key:
            self.youtube_service = build('youtube', 'v3', developerKey=api_key, cache_discovery=False)

    def fetch(self, video_url: str, title: Optional[str] = None) -> Video:
        """Title, description, views and publish date for one video"""
        video_id = extract_video_id(video_url)
        if not video_id:
            raise ValueError(f'Not a YouTube video URL: {video_url}')

        video = None
        if self.youtube_service is not None:
            try:
                video = self._fetch_api(video_url, video_id)
            except HttpError as e:
                logger.warning('sources: YouTube API failed for %s: %s, scraping instead', video_id, e)
        if video is None:
            video = self._scrape(video_url)

        if title:
            video.title = title
        video.links = extract_affiliate_links(video.description)
        logger.info('sources: %s has %d marketplace links', video_id, len(video.links))
        return video

    def _fetch_api(self, video_url: str, video_id: str) -> Optional[Video]:
        response = self.youtube_service.videos().list(
            part='snippet,statistics',
            id=video_id,
        ).execute()
        items = response.get('items') or []
        if not items:
            return None
        snippet = items[0].get('snippet', {})
        statistics = items[0].get('statistics', {})
        views = statistics.get('viewCount')
        return Video(
            url=video_url,
            title=snippet.get('title', ''),
            description=snippet.get('description', ''),
            view_count=int(views) if views is not None else None,
            published_at=snippet.get('publishedAt'),
        )

    def _scrape(self, video_url: str) -> Video:
        result = self.fetcher.get(video_url)
        if not 200 <= result.status_code < 300:
            raise FetchError(video_url, f'Watch page returned HTTP {result.status_code}')

        soup = BeautifulSoup(result.text, 'html.parser')
        title = ''
        title_tag = soup.find('meta', property='og:title') or soup.find('title')
        if title_tag is not None:
            title = title_tag.get('content') or title_tag.get_text()
            title = title.replace(' - YouTube', '').strip()

        return Video(
            url=video_url,
            title=title or 'YouTube Video',
            description=_json_string(result.text, 'shortDescription') or '',
            view_count=_int_or_none(_json_string(result.text, 'viewCount')),
            published_at=_json_string(result.text, 'publishDate'),
        )


def _json_string(page: str, key: str) -> Optional[str]:
    """Decode a string value embedded in the watch page's player JSON"""
    match = re.search(r'"%s":("(?:[^"\\]|\\.)*")' % re.escape(key), page or '')
    if not match:
        return None
    try:
        return json.loads(match.group(1))
    except ValueError:
        return None


def _int_or_none(value: Optional[str]) -> Optional[int]:
    try:
        return int(value) if value else None
    except ValueError:
        return None


def age_in_months(published_at: Optional[str], now: Optional[datetime] = None) -> Optional[float]:
    """Months since an ISO publish date, None when the date is missing or unreadable"""
    if not published_at:
        return None
    try:
        published = datetime.fromisoformat(published_at.replace('Z', '+00:00'))
    except ValueError:
        return None
    if published.tzinfo is None:
        published = published.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(0.0, (now - published).days / 30.44)
