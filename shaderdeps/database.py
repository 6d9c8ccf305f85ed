"""Keyed collection of analysed shader programs."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from .program import ShaderProgram
from .serialize import deserialize_program, serialize_program

logger = logging.getLogger(__name__)

DATABASE_VERSION = 1


@dataclass(frozen=True, order=True)
class ProgramKey:
    """Identity of one shader program: its source model and program index."""

    source: str
    index: int

    def describe(self) -> str:
        return f"{self.source}[{self.index}]"


class MergePolicy(Enum):
    """Decide which program survives when two databases disagree on a key."""

    LAST_WRITER = "last-writer"
    FIRST_WRITER = "first-writer"
    STRUCTURAL = "structural"

    @classmethod
    def from_name(cls, name: str) -> "MergePolicy":
        lowered = name.strip().lower().replace("_", "-")
        for member in cls:
            if member.value == lowered:
                return member
        choices = ", ".join(member.value for member in cls)
        raise ValueError(f"unknown merge policy {name!r} (expected one of {choices})")

    def prefer_incoming(self, existing: ShaderProgram, incoming: ShaderProgram) -> bool:
        if self is MergePolicy.FIRST_WRITER:
            return False
        if self is MergePolicy.STRUCTURAL:
            # Fewer unclassified operations win, then more outputs.
            existing_rank = (existing.unknown_count(), -len(existing.output_dependencies))
            incoming_rank = (incoming.unknown_count(), -len(incoming.output_dependencies))
            if incoming_rank != existing_rank:
                return incoming_rank < existing_rank
        return True


@dataclass(frozen=True)
class MergeConflict:
    """Two structurally different programs recorded for the same key."""

    key: ProgramKey
    kept: ShaderProgram
    discarded: ShaderProgram


class ShaderDatabase:
    """Mapping of :class:`ProgramKey` to :class:`ShaderProgram`."""

    def __init__(
        self,
        programs: Optional[Mapping[ProgramKey, ShaderProgram]] = None,
        conflicts: Iterable[MergeConflict] = (),
    ) -> None:
        self._programs: Dict[ProgramKey, ShaderProgram] = dict(programs or {})
        self.conflicts: List[MergeConflict] = list(conflicts)

    def __len__(self) -> int:
        return len(self._programs)

    def __contains__(self, key: object) -> bool:
        return key in self._programs

    def __iter__(self) -> Iterator[ProgramKey]:
        return iter(sorted(self._programs))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ShaderDatabase):
            return NotImplemented
        return self._programs == other._programs

    def items(self) -> List[Tuple[ProgramKey, ShaderProgram]]:
        return [(key, self._programs[key]) for key in self]

    def insert(self, key: ProgramKey, program: ShaderProgram) -> None:
        """Store ``program`` under ``key`` replacing any previous entry."""

        self._programs[key] = program

    def lookup(self, key: ProgramKey) -> Optional[ShaderProgram]:
        return self._programs.get(key)

    def add(
        self,
        key: ProgramKey,
        program: ShaderProgram,
        policy: MergePolicy = MergePolicy.LAST_WRITER,
    ) -> Optional[MergeConflict]:
        """Insert ``program`` resolving an existing entry through ``policy``."""

        existing = self._programs.get(key)
        if existing is None or existing == program:
            if existing is None:
                self._programs[key] = program
            return None

        if policy.prefer_incoming(existing, program):
            kept, discarded = program, existing
        else:
            kept, discarded = existing, program
        self._programs[key] = kept
        conflict = MergeConflict(key, kept, discarded)
        self.conflicts.append(conflict)
        logger.warning(
            "conflicting programs for %s; keeping the %s entry",
            key.describe(),
            "incoming" if kept is program else "existing",
        )
        return conflict

    def merge(
        self, other: "ShaderDatabase", policy: MergePolicy = MergePolicy.LAST_WRITER
    ) -> "ShaderDatabase":
        """Return the key-wise union of ``self`` and ``other``."""

        merged = ShaderDatabase(self._programs, self.conflicts + other.conflicts)
        for key, program in other.items():
            merged.add(key, program, policy)
        return merged

    # ------------------------------------------------------------------
    # persistence
    # ------------------------------------------------------------------
    def to_json(self) -> Dict[str, Any]:
        return {
            "version": DATABASE_VERSION,
            "programs": [
                {
                    "source": key.source,
                    "index": key.index,
                    "program": serialize_program(program),
                }
                for key, program in self.items()
            ],
            "conflicts": [
                {
                    "source": conflict.key.source,
                    "index": conflict.key.index,
                    "kept": serialize_program(conflict.kept),
                    "discarded": serialize_program(conflict.discarded),
                }
                for conflict in self.conflicts
            ],
        }

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "ShaderDatabase":
        version = data.get("version", DATABASE_VERSION)
        if version != DATABASE_VERSION:
            raise ValueError(f"unsupported database version: {version!r}")
        database = cls()
        for entry in data.get("programs", []):
            key = ProgramKey(str(entry["source"]), int(entry["index"]))
            database.insert(key, deserialize_program(entry["program"]))
        for entry in data.get("conflicts", []):
            database.conflicts.append(
                MergeConflict(
                    ProgramKey(str(entry["source"]), int(entry["index"])),
                    deserialize_program(entry["kept"]),
                    deserialize_program(entry["discarded"]),
                )
            )
        return database

    def save(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        text = json.dumps(self.to_json(), indent=2, sort_keys=True)
        path.write_text(text + "\n", "utf-8")

    @classmethod
    def load(cls, path: Path) -> "ShaderDatabase":
        data = json.loads(path.read_text("utf-8"))
        if not isinstance(data, Mapping):
            raise ValueError("shader database file must contain a JSON object")
        return cls.from_json(data)


def merge_all(
    databases: Iterable[ShaderDatabase],
    policy: MergePolicy = MergePolicy.LAST_WRITER,
) -> ShaderDatabase:
    """Fold ``databases`` left to right into one database."""

    result = ShaderDatabase()
    for database in databases:
        result = result.merge(database, policy)
    return result


__all__ = [
    "DATABASE_VERSION",
    "MergeConflict",
    "MergePolicy",
    "ProgramKey",
    "ShaderDatabase",
    "merge_all",
]
