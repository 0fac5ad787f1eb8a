"""HTTP fetching of Archon.gg build pages and build-code extraction."""

import time
from typing import Callable, Optional
from urllib.parse import unquote

import requests
from bs4 import BeautifulSoup

from archon_updater.data.identifiers import IdentifierMapper
from archon_updater.data.models import (
    DungeonRun,
    FetchOutcome,
    FetchTarget,
    Found,
    NotAvailable,
    Period,
    RaidEncounter,
    Settings,
    TransportError,
)
from archon_updater.utils.errors import ValidationError
from archon_updater.utils.logger import get_logger
from archon_updater.web.rate_limiter import RateLimiter


WOWHEAD_TALENT_CALC_PREFIX = "https://www.wowhead.com/talent-calc/blizzard/"


def _normalize_href(href: str) -> str:
    href = href.strip()
    if href.startswith("//"):
        return "https:" + href
    if href.startswith("http://"):
        return "https://" + href[len("http://"):]
    return href


def locate_build_code(
    html: str,
    class_token: str,
    spec_token: str,
    prefix: str = WOWHEAD_TALENT_CALC_PREFIX,
) -> Optional[str]:
    """
    Find the build code for a class/spec in an Archon page.

    Archon renders the recommended build as a link to the Wowhead talent
    calculator: ``<prefix><class>/<spec>/<code>``. Links for other
    classes/specs are ignored; the first matching link in document order
    wins.

    Args:
        html: Page body
        class_token: Canonical class token (e.g. "death-knight")
        spec_token: Canonical spec token (e.g. "frost")
        prefix: Talent calculator URL prefix

    Returns:
        The build code, or None if the page has no matching link
    """
    soup = BeautifulSoup(html or "", "html.parser")

    for anchor in soup.select("a[href]"):
        href = _normalize_href(anchor.get("href", ""))
        if not href.startswith(prefix):
            continue

        path = href[len(prefix):].split("#", 1)[0].split("?", 1)[0]
        parts = [p for p in path.split("/") if p]
        if len(parts) < 3:
            continue
        if parts[0].lower() != class_token or parts[1].lower() != spec_token:
            continue

        # Export strings use a base64 alphabet, so '/' can appear in the code
        code = unquote("/".join(parts[2:]))
        if code:
            return code

    return None


class ArchonFetcher:
    """
    Fetches one Archon page per target and extracts its build code.

    Every request takes a token from the shared rate limiter first.
    `fetch()` never raises: failures come back as TransportError outcomes.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        rate_limiter: Optional[RateLimiter] = None,
        session: Optional[requests.Session] = None,
        mapper: Optional[IdentifierMapper] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize fetcher.

        Args:
            settings: Runtime settings (URLs, timeouts, status handling)
            rate_limiter: Limiter shared with every other worker
            session: HTTP session (a new one is created if omitted)
            mapper: Identifier mapper
            clock: Monotonic clock used for the per-request deadline
        """
        self.settings = settings or Settings()
        self.rate_limiter = rate_limiter
        self.mapper = mapper or IdentifierMapper()
        self.clock = clock
        self.log = get_logger()

        if session is None:
            session = requests.Session()
            session.headers.update({
                "User-Agent": self.settings.user_agent,
                "Accept": "text/html,application/xhtml+xml;q=0.9,*/*;q=0.8",
            })
        self.session = session

    def build_url(self, target: FetchTarget) -> str:
        """
        Build the Archon page URL for a target.

        Args:
            target: Fetch target

        Returns:
            Absolute URL

        Raises:
            ValidationError: If the target's class/spec/content is invalid
        """
        cls = self.mapper.class_token(target.character.character_class)
        spec = self.mapper.spec_token(target.character.character_class, target.specialization)
        base = f"{self.settings.base_url.rstrip('/')}/wow/builds/{spec}/{cls}"

        content = target.content
        if isinstance(content, RaidEncounter):
            difficulty = self.mapper.difficulty_token(content.difficulty)
            boss = self.mapper.boss_token(content.boss)
            return f"{base}/raid/talents/{difficulty}/{boss}"

        if isinstance(content, DungeonRun):
            dungeon = self.mapper.dungeon_token(content.dungeon)
            period = target.period or Period.CURRENT
            return (
                f"{base}/mythic-plus/talents/{self.settings.dungeon_bracket}/"
                f"{dungeon}/{period.value}"
            )

        raise ValidationError([f"unsupported content {content!r}"])

    def fetch(self, target: FetchTarget) -> FetchOutcome:
        """
        Fetch the page for a target and extract its build code.

        Args:
            target: Fetch target

        Returns:
            Found, NotAvailable or TransportError
        """
        try:
            url = self.build_url(target)
        except ValidationError as e:
            return TransportError(reason=str(e))

        return self.fetch_url(
            url,
            self.mapper.class_token(target.character.character_class),
            self.mapper.spec_token(target.character.character_class, target.specialization),
        )

    def fetch_url(self, url: str, class_token: str, spec_token: str) -> FetchOutcome:
        """
        Fetch a page and extract the build code for a class/spec.

        Args:
            url: Page URL
            class_token: Canonical class token
            spec_token: Canonical spec token

        Returns:
            Found, NotAvailable or TransportError

        `read_timeout` bounds both each socket read and the whole request:
        a body still arriving after that many seconds is a timeout.
        """
        if self.rate_limiter is not None:
            self.rate_limiter.acquire()

        self.log.debug(f"GET {url}")
        started = self.clock()
        try:
            response = self.session.get(
                url,
                timeout=(self.settings.connect_timeout, self.settings.read_timeout),
                stream=True,
            )
            try:
                status = response.status_code
                if status in self.settings.not_available_statuses:
                    self.log.debug(f"HTTP {status} for {url}, treating as no data")
                    return NotAvailable(url=url)

                if not 200 <= status < 300:
                    self.log.warning(f"HTTP {status} for {url}")
                    return TransportError(reason=f"HTTP {status}", url=url)

                html = self._read_body(response, started + self.settings.read_timeout)
            finally:
                response.close()
        except requests.Timeout as e:
            self.log.warning(f"Timed out fetching {url}: {e}")
            return TransportError(reason=f"timed out: {e}", url=url)
        except requests.RequestException as e:
            self.log.warning(f"Failed to fetch {url}: {e}")
            return TransportError(reason=str(e), url=url)

        code = locate_build_code(
            html,
            class_token,
            spec_token,
            prefix=self.settings.talent_calc_prefix,
        )
        if code is None:
            self.log.debug(f"No {spec_token} {class_token} build on {url}")
            return NotAvailable(url=url)

        return Found(build_code=code, url=url)

    def _read_body(self, response: requests.Response, deadline: float) -> str:
        chunks = []
        for chunk in response.iter_content(chunk_size=65536):
            chunks.append(chunk)
            if self.clock() > deadline:
                raise requests.Timeout(
                    f"response not complete within {self.settings.read_timeout:g}s"
                )
        return b"".join(chunks).decode(response.encoding or "utf-8", errors="replace")

    def close(self) -> None:
        """Close the underlying HTTP session."""
        self.session.close()
