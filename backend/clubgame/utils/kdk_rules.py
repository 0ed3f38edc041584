"""
KDK (round-robin) pairing ruleset.

A ruleset maps an exact participant count to a fixed pairing table. Entries
use 0-based seed positions: position p is the member whose seed index is p+1.

    singles: {"6": [[0, 1], [2, 3], ...]}
    doubles: {"5": [{"team1": [0, 1], "team2": [2, 3]}, ...]}

Loaded once at startup and never mutated afterwards.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

DEFAULT_RULES_DIR = Path(__file__).resolve().parent.parent / "data"
SINGLE_RULES_FILE = "kdk_rules_single.json"
DOUBLE_RULES_FILE = "kdk_rules_double.json"

SinglesPairing = Tuple[int, int]
DoublesPairing = Tuple[Tuple[int, int], Tuple[int, int]]


@dataclass(frozen=True)
class KdkRuleset:
    singles: Mapping[int, Tuple[SinglesPairing, ...]] = field(default_factory=dict)
    doubles: Mapping[int, Tuple[DoublesPairing, ...]] = field(default_factory=dict)

    def singles_table(self, count: int) -> Optional[Tuple[SinglesPairing, ...]]:
        return self.singles.get(count)

    def doubles_table(self, count: int) -> Optional[Tuple[DoublesPairing, ...]]:
        return self.doubles.get(count)

    def supported_counts(self, is_single: bool) -> List[int]:
        return sorted(self.singles if is_single else self.doubles)


def _parse_singles(raw: Dict[str, list]) -> Dict[int, Tuple[SinglesPairing, ...]]:
    tables: Dict[int, Tuple[SinglesPairing, ...]] = {}
    for key, entries in raw.items():
        count = int(key)
        parsed = []
        for entry in entries:
            if len(entry) != 2:
                raise ValueError(f"Singles rule for {count} has a non-pair entry: {entry!r}")
            a, b = int(entry[0]), int(entry[1])
            _check_positions(count, (a, b))
            parsed.append((a, b))
        tables[count] = tuple(parsed)
    return tables


def _parse_doubles(raw: Dict[str, list]) -> Dict[int, Tuple[DoublesPairing, ...]]:
    tables: Dict[int, Tuple[DoublesPairing, ...]] = {}
    for key, entries in raw.items():
        count = int(key)
        parsed = []
        for entry in entries:
            team1 = tuple(int(p) for p in entry["team1"])
            team2 = tuple(int(p) for p in entry["team2"])
            if len(team1) != 2 or len(team2) != 2:
                raise ValueError(f"Doubles rule for {count} needs two players per side: {entry!r}")
            _check_positions(count, team1 + team2)
            parsed.append((team1, team2))
        tables[count] = tuple(parsed)
    return tables


def _check_positions(count: int, positions: Sequence[int]) -> None:
    if len(set(positions)) != len(positions):
        raise ValueError(f"Rule for {count} repeats a player within one match: {list(positions)}")
    for p in positions:
        if not 0 <= p < count:
            raise ValueError(f"Rule for {count} references position {p} (valid 0..{count - 1})")


def build_ruleset(singles: Dict[str, list], doubles: Dict[str, list]) -> KdkRuleset:
    return KdkRuleset(
        singles=MappingProxyType(_parse_singles(singles)),
        doubles=MappingProxyType(_parse_doubles(doubles)),
    )


def load_kdk_ruleset(rules_dir: Optional[str] = None) -> KdkRuleset:
    """Read both ruleset files from rules_dir (or KDK_RULES_DIR, or the packaged defaults)."""
    directory = Path(rules_dir or os.getenv("KDK_RULES_DIR") or DEFAULT_RULES_DIR)
    with open(directory / SINGLE_RULES_FILE, encoding="utf-8") as f:
        singles = json.load(f)
    with open(directory / DOUBLE_RULES_FILE, encoding="utf-8") as f:
        doubles = json.load(f)
    ruleset = build_ruleset(singles, doubles)
    logger.info(
        "Loaded KDK rules from %s: singles=%s doubles=%s",
        directory,
        ruleset.supported_counts(True),
        ruleset.supported_counts(False),
    )
    return ruleset


def wire_kdk_pairings(ruleset: KdkRuleset, is_single: bool, seeded_uids: List[str]) -> List[Tuple[Tuple[str, ...], Tuple[str, ...]]]:
    """
    Map a pairing table onto seeded participants.

    Args:
        seeded_uids: participant uids ordered by seed index (position 0 = seed 1)

    Returns:
        One (side1, side2) tuple of uids per table entry, in table order.

    Raises:
        KeyError if no table exists for len(seeded_uids)
    """
    count = len(seeded_uids)
    if is_single:
        table = ruleset.singles_table(count)
        if table is None:
            raise KeyError(count)
        return [((seeded_uids[a],), (seeded_uids[b],)) for a, b in table]

    table = ruleset.doubles_table(count)
    if table is None:
        raise KeyError(count)
    return [
        (tuple(seeded_uids[p] for p in team1), tuple(seeded_uids[p] for p in team2))
        for team1, team2 in table
    ]
