"""Mapping of classes, specs and content names to Archon/Wowhead tokens."""

import re
from typing import Dict, List, Tuple

from archon_updater.data.models import CharacterClass, Selection
from archon_updater.utils.errors import ValidationError


# Specializations per class, as used in Archon and Wowhead URLs
CLASS_SPECS: Dict[CharacterClass, Tuple[str, ...]] = {
    CharacterClass.WARRIOR: ("arms", "fury", "protection"),
    CharacterClass.PALADIN: ("holy", "protection", "retribution"),
    CharacterClass.HUNTER: ("beast-mastery", "marksmanship", "survival"),
    CharacterClass.ROGUE: ("assassination", "outlaw", "subtlety"),
    CharacterClass.PRIEST: ("discipline", "holy", "shadow"),
    CharacterClass.DEATH_KNIGHT: ("blood", "frost", "unholy"),
    CharacterClass.SHAMAN: ("elemental", "enhancement", "restoration"),
    CharacterClass.MAGE: ("arcane", "fire", "frost"),
    CharacterClass.WARLOCK: ("affliction", "demonology", "destruction"),
    CharacterClass.MONK: ("brewmaster", "mistweaver", "windwalker"),
    CharacterClass.DRUID: ("balance", "feral", "guardian", "restoration"),
    CharacterClass.DEMON_HUNTER: ("havoc", "vengeance"),
    CharacterClass.EVOKER: ("augmentation", "devastation", "preservation"),
}

# In-game class file names (UnitClass second return)
CLASS_FILE_TOKENS: Dict[CharacterClass, str] = {
    CharacterClass.WARRIOR: "WARRIOR",
    CharacterClass.PALADIN: "PALADIN",
    CharacterClass.HUNTER: "HUNTER",
    CharacterClass.ROGUE: "ROGUE",
    CharacterClass.PRIEST: "PRIEST",
    CharacterClass.DEATH_KNIGHT: "DEATHKNIGHT",
    CharacterClass.SHAMAN: "SHAMAN",
    CharacterClass.MAGE: "MAGE",
    CharacterClass.WARLOCK: "WARLOCK",
    CharacterClass.MONK: "MONK",
    CharacterClass.DRUID: "DRUID",
    CharacterClass.DEMON_HUNTER: "DEMONHUNTER",
    CharacterClass.EVOKER: "EVOKER",
}

RAID_DIFFICULTIES: Tuple[str, ...] = ("normal", "heroic", "mythic")

CONTENT_TOKEN_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
_SEPARATORS_RE = re.compile(r"[\s_\-]+")


def _normalize(name: str) -> str:
    return _SEPARATORS_RE.sub("-", (name or "").strip().lower()).strip("-")


def _compact(token: str) -> str:
    return token.replace("-", "")


class IdentifierMapper:
    """
    Pure lookups from user-facing names to remote tokens.

    Class and spec names are normalized for case and separators only
    ("Death Knight", "death_knight" and "DeathKnight" all map to
    "death-knight"). Content names must already be canonical.
    """

    def parse_class(self, name: str) -> CharacterClass:
        """
        Resolve a declared class name.

        Raises:
            ValidationError: If the class is unknown
        """
        normalized = _normalize(name)
        for cls in CharacterClass:
            if normalized == cls.value or _compact(normalized) == _compact(cls.value):
                return cls
        raise ValidationError([f"unknown class '{name}'"])

    def class_token(self, name: str) -> str:
        return self.parse_class(name).value

    def class_file_token(self, name: str) -> str:
        return CLASS_FILE_TOKENS[self.parse_class(name)]

    def spec_token(self, class_name: str, spec: str) -> str:
        """
        Resolve a specialization within its class.

        Args:
            class_name: Declared class name
            spec: Declared specialization name

        Returns:
            Canonical spec token

        Raises:
            ValidationError: If the class is unknown or the specialization is not
                valid for it
        """
        cls = self.parse_class(class_name)
        normalized = _normalize(spec)
        for token in CLASS_SPECS[cls]:
            if normalized == token or _compact(normalized) == _compact(token):
                return token
        raise ValidationError([
            f"specialization '{spec}' is not valid for {cls.value} "
            f"(expected one of: {', '.join(CLASS_SPECS[cls])})"
        ])

    def difficulty_token(self, difficulty: str) -> str:
        token = (difficulty or "").strip().lower()
        if token not in RAID_DIFFICULTIES:
            raise ValidationError([
                f"unknown raid difficulty '{difficulty}' "
                f"(expected one of: {', '.join(RAID_DIFFICULTIES)})"
            ])
        return token

    def boss_token(self, name: str) -> str:
        return self._content_token("raid boss", name)

    def dungeon_token(self, name: str) -> str:
        return self._content_token("dungeon", name)

    def _content_token(self, kind: str, name: str) -> str:
        if not isinstance(name, str) or not CONTENT_TOKEN_RE.match(name):
            raise ValidationError([
                f"{kind} '{name}' is not a lowercase-hyphenated name"
            ])
        return name

    def validate(self, selection: Selection) -> None:
        """
        Check every class/spec/content name in a selection.

        All problems are collected so the user can fix them in one pass.

        Args:
            selection: Selection to check

        Raises:
            ValidationError: Listing every offending character or name
        """
        problems: List[str] = []

        for character in selection.characters:
            prefix = f"character '{character.name}'"
            try:
                self.parse_class(character.character_class)
            except ValidationError as e:
                problems.extend(f"{prefix}: {p}" for p in e.problems)
                continue

            if not character.specializations:
                problems.append(f"{prefix}: no specializations declared")

            for spec in character.specializations:
                try:
                    self.spec_token(character.character_class, spec)
                except ValidationError as e:
                    problems.extend(f"{prefix}: {p}" for p in e.problems)

        if selection.raid_bosses and not selection.raid_difficulties:
            problems.append("raid bosses declared without any raid difficulty")

        checks = (
            [(self.difficulty_token, d) for d in selection.raid_difficulties]
            + [(self.boss_token, b) for b in selection.raid_bosses]
            + [(self.dungeon_token, d) for d in selection.dungeons]
        )
        for check, value in checks:
            try:
                check(value)
            except ValidationError as e:
                problems.extend(e.problems)

        if problems:
            raise ValidationError(problems)
