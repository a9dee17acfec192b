"""Relationship maintenance for the family tree graph.

Every edit to a person goes through ``apply_person_update``, which performs the
reciprocal updates the edit implies:

- parents gain the person in ``children_ids`` (append-only, never retracted)
- spouses removed from the person drop the person from their ``spouse_ids``
- spouses added to the person gain the person in their ``spouse_ids``

The functions here are pure. The input graph is never mutated; touched records
are copied into a new ``TreeData`` value.
"""

import logging
import uuid
from collections.abc import Mapping
from typing import Any

from models import Gender, Person, TreeData

logger = logging.getLogger("familytree.relationships")

UNKNOWN_NAME = "Unknown"

# Fields a new person may be created with; relationships always start empty.
_DRAFT_FIELDS = (
    "birth_date",
    "birth_place",
    "death_date",
    "death_place",
    "bio",
    "photo",
)


def person_validation_errors(person: Person) -> list[str]:
    """Return the reasons a person record cannot be saved (empty list if valid)."""
    errors = []
    if not person.first_name.strip():
        errors.append("First name is required")
    if not person.last_name.strip():
        errors.append("Last name is required")
    return errors


def apply_person_update(
    tree: TreeData,
    previous: Person | None,
    updated: Person,
) -> tuple[TreeData, list[str]]:
    """
    Store ``updated`` in the graph and apply the reciprocal relationship updates.

    Args:
        tree: Current graph (left untouched)
        previous: Prior state of the same person, or None when the person is new
        updated: New state of the person

    Returns:
        (new graph, ids of other people whose records changed and need saving)
    """
    old_spouse_ids = previous.spouse_ids if previous else []
    new_spouse_ids = list(dict.fromkeys(sid for sid in updated.spouse_ids if sid != updated.id))

    removed = [sid for sid in old_spouse_ids if sid not in new_spouse_ids]
    added = [sid for sid in new_spouse_ids if sid not in old_spouse_ids]

    people = dict(tree.people)
    people[updated.id] = updated.model_copy(update={"spouse_ids": new_spouse_ids}, deep=True)

    touched: list[str] = []

    def editable(person_id: str) -> Person:
        """Copy a relative's record into the new graph the first time it changes."""
        if person_id not in touched:
            people[person_id] = people[person_id].model_copy(deep=True)
            touched.append(person_id)
        return people[person_id]

    # Parent -> child links
    for parent_id in (updated.father_id, updated.mother_id):
        if not parent_id or parent_id == updated.id:
            continue
        if parent_id not in people:
            logger.debug(f"Parent {parent_id} of {updated.id} not in tree, skipping child link")
            continue
        if updated.id not in people[parent_id].children_ids:
            editable(parent_id).children_ids.append(updated.id)

    # Spouse unlinking
    for spouse_id in removed:
        if spouse_id not in people:
            continue
        if updated.id in people[spouse_id].spouse_ids:
            ex_spouse = editable(spouse_id)
            ex_spouse.spouse_ids = [sid for sid in ex_spouse.spouse_ids if sid != updated.id]

    # Spouse linking
    for spouse_id in added:
        if spouse_id not in people:
            logger.debug(f"Spouse {spouse_id} of {updated.id} not in tree, skipping reciprocal link")
            continue
        if updated.id not in people[spouse_id].spouse_ids:
            editable(spouse_id).spouse_ids.append(updated.id)

    new_tree = TreeData(people=people, root_id=tree.root_id or updated.id)
    return new_tree, touched


def create_person(partial: Mapping[str, Any] | None = None) -> Person:
    """
    Build a new person with a fresh id and no relationships.

    Missing names default to "Unknown" and a missing gender to Other.
    """
    partial = partial or {}
    values = {field: partial.get(field) for field in _DRAFT_FIELDS}
    return Person(
        id=str(uuid.uuid4()),
        first_name=partial.get("first_name") or UNKNOWN_NAME,
        last_name=partial.get("last_name") or UNKNOWN_NAME,
        gender=partial.get("gender") or Gender.OTHER,
        father_id=None,
        mother_id=None,
        spouse_ids=[],
        children_ids=[],
        **values,
    )
