import logging
import requests
import xml.etree.ElementTree as ET
from dataclasses import dataclass

from state import Track, track_id_for

log = logging.getLogger("bluos")

@dataclass
class BluOSStatus:
    title: str | None
    artist: str | None
    album: str | None
    duration: int | None  # seconds
    secs: int | None      # elapsed seconds
    state: str | None     # 'play', 'pause', 'stop', 'stream', 'connecting'

    def track(self) -> Track | None:
        """The Track this status describes, or None without artist + title."""
        if not self.artist or not self.title:
            return None
        duration_ms = self.duration * 1000 if self.duration else None
        return Track(
            id=track_id_for(self.artist, self.title, self.album, duration_ms),
            artist=self.artist,
            title=self.title,
            album=self.album,
            duration_ms=duration_ms,
        )

    @property
    def position_ms(self) -> int | None:
        return self.secs * 1000 if self.secs is not None else None

class BluOSClient:
    """
    Minimal BluOS client that fetches and parses /Status (XML).
    Uses recursive lookup + tag fallbacks (name/title1, artist, album, secs, totlen, state).
    """
    def __init__(self, host: str, port: int = 11000, timeout: int = 5, session: requests.Session | None = None):
        self.base = f"http://{host}:{port}"
        self.timeout = timeout
        self.session = session or requests.Session()

    def _findtext_any(self, root: ET.Element, *tags: str):
        for t in tags:
            el = root.find(f".//{t}")
            if el is not None and el.text:
                return el.text.strip()
        return None

    def _to_int(self, s):
        if s is None: return None
        try:
            return int(float(s))
        except ValueError:
            return None

    def parse_status(self, text: str) -> BluOSStatus:
        root = ET.fromstring(text)

        # title appears as <name> and also as <title1>; fallbacks included
        title  = self._findtext_any(root, "name", "title1", "title", "song")
        artist = self._findtext_any(root, "artist", "title2")
        album  = self._findtext_any(root, "album", "title3")

        secs     = self._findtext_any(root, "secs", "elapsed", "position", "time")
        duration = self._findtext_any(root, "totlen", "duration", "total", "trackLength", "length")

        state = self._findtext_any(root, "state", "status", "mode")
        state = state.lower() if state else None

        return BluOSStatus(
            title=title,
            artist=artist,
            album=album,
            duration=self._to_int(duration),
            secs=self._to_int(secs),
            state=state,
        )

    def get_status(self) -> BluOSStatus | None:
        try:
            resp = self.session.get(f"{self.base}/Status", timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            log.debug("BluOS status fetch failed: %s", e)
            return None

        try:
            return self.parse_status(resp.text)
        except ET.ParseError as e:
            log.debug("BluOS status XML unparseable: %s", e)
            return None
