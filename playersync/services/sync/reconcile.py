"""
Field-by-field reconciliation of cached profiles against remote documents.

Each ``diff_*`` function compares one group of fields and returns
``{field: (old, new)}`` for the fields that differ. ``apply_diff`` writes a
diff onto the player; callers skip the write when the diff is empty.
"""
from typing import Any, Dict, Optional, Tuple

from playersync.models import Player
from playersync.services.stats.schemas import MasteryDoc, PlayerDoc

ProfileDiff = Dict[str, Tuple[Any, Any]]

COSMETIC_FIELDS = ("emoticon_id", "logo_id", "title_id", "nameplate_id")


def _diff(player: Player, values: Dict[str, Any]) -> ProfileDiff:
    return {
        field: (getattr(player, field), value)
        for field, value in values.items()
        if getattr(player, field) != value
    }


def diff_cosmetics(player: Player, doc: PlayerDoc) -> ProfileDiff:
    return _diff(player, {field: getattr(doc, field) for field in COSMETIC_FIELDS})


def diff_tags(player: Player, doc: PlayerDoc) -> ProfileDiff:
    return _diff(player, {"tags": list(doc.tags)})


def diff_social(player: Player, doc: PlayerDoc) -> ProfileDiff:
    return _diff(player, {"social_url": doc.social_url})


def diff_discord(player: Player, doc: PlayerDoc) -> ProfileDiff:
    """Discord binding; documents without platform ids never unlink a player."""
    if doc.discord_id is None:
        return {}
    return _diff(player, {"discord_id": doc.discord_id})


def diff_status(player: Player, doc: PlayerDoc) -> ProfileDiff:
    if doc.player_status is None:
        return {}
    return _diff(player, {"player_status": doc.player_status})


def diff_region(player: Player, region: Optional[str]) -> ProfileDiff:
    if not region:
        return {}
    return _diff(player, {"region": region})


def diff_xp(player: Player, mastery: Optional[MasteryDoc]) -> ProfileDiff:
    if mastery is None:
        return {}
    return _diff(player, {"current_xp": mastery.current_level_xp})


def diff_profile(
    player: Player,
    doc: PlayerDoc,
    mastery: Optional[MasteryDoc] = None,
    region: Optional[str] = None,
) -> ProfileDiff:
    """Every profile field the full sync mirrors."""
    diff: ProfileDiff = {}
    diff.update(diff_cosmetics(player, doc))
    diff.update(diff_tags(player, doc))
    diff.update(diff_social(player, doc))
    diff.update(diff_discord(player, doc))
    diff.update(diff_status(player, doc))
    diff.update(diff_region(player, region))
    diff.update(diff_xp(player, mastery))
    return diff


def apply_diff(player: Player, diff: ProfileDiff) -> None:
    for field, (_, new) in diff.items():
        setattr(player, field, new)
