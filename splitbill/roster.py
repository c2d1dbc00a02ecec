from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator
from uuid import uuid4


@dataclass(frozen=True)
class Person:
    name: str
    id: str = field(default_factory=lambda: uuid4().hex)


class Roster:
    """Ordered, duplicate-free list of participants.

    Display order is positional; identity is the opaque ``Person.id`` so other
    structures never have to be renumbered when someone leaves.
    """

    def __init__(self) -> None:
        self._people: list[Person] = []

    def __len__(self) -> int:
        return len(self._people)

    def __iter__(self) -> Iterator[Person]:
        return iter(self._people)

    def __getitem__(self, index: int) -> Person:
        self._check_index(index)
        return self._people[index]

    @property
    def names(self) -> list[str]:
        return [person.name for person in self._people]

    @property
    def ids(self) -> list[str]:
        return [person.id for person in self._people]

    def add(self, name: str) -> Person | None:
        cleaned = name.strip() if isinstance(name, str) else ""
        if not cleaned or cleaned in self.names:
            return None
        person = Person(name=cleaned)
        self._people.append(person)
        return person

    def remove(self, index: int) -> Person:
        self._check_index(index)
        return self._people.pop(index)

    def index_of(self, person_id: str) -> int | None:
        for index, person in enumerate(self._people):
            if person.id == person_id:
                return index
        return None

    def clear(self) -> None:
        self._people.clear()

    def _check_index(self, index: int) -> None:
        # Negative indices are rejected rather than counted from the end.
        if not 0 <= index < len(self._people):
            raise IndexError(f"Person index out of range: {index}")
