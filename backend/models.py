"""Data model for the family tree: people, the whole graph, and AI extraction results.

Python attributes are snake_case; the JSON wire format is camelCase
(``firstName``, ``spouseIds``, ``rootId``) so records round-trip unchanged
between the browser client, the API and the store.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class Gender(str, Enum):
    MALE = "Male"
    FEMALE = "Female"
    OTHER = "Other"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Person(_CamelModel):
    """One individual in the tree.

    ``spouse_ids`` is a set kept as an ordered list (duplicates are dropped on
    validation). ``children_ids`` is maintained as the inverse of the
    children's ``father_id``/``mother_id`` pointers.
    """
    id: str
    first_name: str
    last_name: str
    gender: Gender = Gender.OTHER
    birth_date: str | None = None  # YYYY-MM-DD when known
    birth_place: str | None = None
    death_date: str | None = None
    death_place: str | None = None
    bio: str | None = None
    photo: str | None = None  # URL or data URI
    father_id: str | None = None
    mother_id: str | None = None
    spouse_ids: list[str] = Field(default_factory=list)
    children_ids: list[str] = Field(default_factory=list)

    @field_validator("father_id", "mother_id")
    @classmethod
    def _blank_parent_is_unknown(cls, value: str | None) -> str | None:
        # Editors send "" for "no parent selected"
        return value or None

    @field_validator("spouse_ids")
    @classmethod
    def _dedupe_spouses(cls, value: list[str]) -> list[str]:
        return list(dict.fromkeys(value))

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class PersonDraft(_CamelModel):
    """Partial person used to create a new record; every field is optional."""
    first_name: str | None = None
    last_name: str | None = None
    gender: Gender | None = None
    birth_date: str | None = None
    birth_place: str | None = None
    death_date: str | None = None
    death_place: str | None = None
    bio: str | None = None
    photo: str | None = None


class ExtractedPerson(_CamelModel):
    """Structured result of AI extraction. Names and gender are mandatory."""
    first_name: str
    last_name: str
    gender: Gender
    birth_date: str | None = None
    birth_place: str | None = None
    death_date: str | None = None
    death_place: str | None = None
    bio: str | None = None

    @field_validator("gender", mode="before")
    @classmethod
    def _normalize_gender(cls, value):
        if isinstance(value, str):
            return value.strip().capitalize()
        return value


class TreeData(_CamelModel):
    """The whole graph: people keyed by id plus the default display ancestor."""
    people: dict[str, Person] = Field(default_factory=dict)
    root_id: str | None = None
