"""Data models for selections, fetch targets and managed builds."""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union


class CharacterClass(Enum):
    """Playable classes, valued by their canonical remote token."""
    WARRIOR = "warrior"
    PALADIN = "paladin"
    HUNTER = "hunter"
    ROGUE = "rogue"
    PRIEST = "priest"
    DEATH_KNIGHT = "death-knight"
    SHAMAN = "shaman"
    MAGE = "mage"
    WARLOCK = "warlock"
    MONK = "monk"
    DRUID = "druid"
    DEMON_HUNTER = "demon-hunter"
    EVOKER = "evoker"


class Period(Enum):
    """Dungeon data snapshot."""
    CURRENT = "this-week"
    PREVIOUS = "last-week"


def humanize(token: str) -> str:
    """Turn a lowercase-hyphenated token into a display label."""
    return " ".join(part.capitalize() for part in token.split("-") if part)


@dataclass(frozen=True)
class Character:
    """A user-declared character."""
    name: str
    character_class: str
    specializations: Tuple[str, ...] = ()


@dataclass(frozen=True)
class RaidEncounter:
    """One raid boss at one difficulty."""
    boss: str
    difficulty: str

    category = "raid"

    @property
    def label(self) -> str:
        return f"{humanize(self.boss)} ({humanize(self.difficulty)})"


@dataclass(frozen=True)
class DungeonRun:
    """One Mythic+ dungeon."""
    dungeon: str

    category = "dungeon"

    @property
    def label(self) -> str:
        return f"{humanize(self.dungeon)} (M+)"


ContentItem = Union[RaidEncounter, DungeonRun]


@dataclass(frozen=True)
class Selection:
    """Everything one run should fetch and where to put it."""
    characters: Tuple[Character, ...] = ()
    raid_difficulties: Tuple[str, ...] = ()
    raid_bosses: Tuple[str, ...] = ()
    dungeons: Tuple[str, ...] = ()
    clear_previous_builds: bool = False
    output_path: str = ""


@dataclass(frozen=True)
class EntryKey:
    """Identity of a managed build: character + spec + content."""
    character: str
    specialization: str
    content: ContentItem

    def label(self, marker: str) -> str:
        """
        Build the label the entry is stored under.

        Args:
            marker: Suffix that flags the entry as managed

        Returns:
            Label string, unique per key
        """
        return (
            f"{self.character} - {humanize(self.specialization)} - "
            f"{self.content.label}{marker}"
        )


@dataclass(frozen=True)
class FetchTarget:
    """One concrete remote lookup."""
    character: Character
    specialization: str
    content: ContentItem
    period: Optional[Period] = None

    @property
    def category(self) -> str:
        return self.content.category

    @property
    def key(self) -> EntryKey:
        return EntryKey(
            character=self.character.name,
            specialization=self.specialization,
            content=self.content,
        )

    def with_period(self, period: Period) -> "FetchTarget":
        """Copy of this target for another dungeon snapshot."""
        return replace(self, period=period)

    def describe(self) -> str:
        text = f"{self.character.name} {self.specialization} {self.content.label}"
        if self.period is not None:
            text += f" [{self.period.value}]"
        return text


class FetchOutcome:
    """Base class for the result of a single fetch."""

    @property
    def is_found(self) -> bool:
        return isinstance(self, Found)


@dataclass(frozen=True)
class Found(FetchOutcome):
    """Page held a build for the target."""
    build_code: str
    url: str = ""


@dataclass(frozen=True)
class NotAvailable(FetchOutcome):
    """Page loaded but has no build for the target."""
    url: str = ""


@dataclass(frozen=True)
class TransportError(FetchOutcome):
    """Request failed, timed out or returned an error status."""
    reason: str
    url: str = ""


@dataclass
class ManagedEntry:
    """
    A build entry owned by the updater.

    `raw` and `leading` are only set for entries read from disk: `raw` is the
    exact original text (leading trivia, field and separator) and `leading`
    the whitespace/comments before the field.
    """
    label: str
    build_code: Optional[str]
    fields: Dict[str, Any] = field(default_factory=dict)
    raw: Optional[str] = field(default=None, compare=False, repr=False)
    leading: str = field(default="", compare=False, repr=False)


@dataclass
class Settings:
    """Runtime settings for the updater."""

    # Remote source
    base_url: str = "https://www.archon.gg"
    dungeon_bracket: str = "high-keys"
    talent_calc_prefix: str = "https://www.wowhead.com/talent-calc/blizzard/"

    # HTTP
    user_agent: str = "ArchonConfigUpdater/1.0"
    connect_timeout: float = 10.0
    read_timeout: float = 180.0
    max_concurrent_requests: int = 5
    requests_per_second: float = 2.0
    burst: int = 5
    not_available_statuses: List[int] = field(default_factory=list)

    # Storage
    table_name: str = "ArchonTalentBuilds"
    label_marker: str = " [Archon]"
    backup: bool = True
    create_if_missing: bool = False

    # Logging
    log_level: str = "INFO"
    log_dir: str = "logs"
