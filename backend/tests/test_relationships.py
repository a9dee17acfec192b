"""Tests for relationship maintenance on person edits."""

import os
import sys

import pytest

# Add backend to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from models import Gender, Person, TreeData
from relationships import (
    UNKNOWN_NAME,
    apply_person_update,
    create_person,
    person_validation_errors,
)
from seed_data import default_tree


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def tree():
    """The default Pendragon family (Arthur + Guinevere, children Mordred and Morgana)."""
    return default_tree()


def edit(tree: TreeData, person_id: str, **changes) -> Person:
    """Return an edited copy of a person, as an editor form would submit it."""
    return tree.people[person_id].model_copy(update=changes, deep=True)


def assert_spouses_symmetric(tree: TreeData):
    for person in tree.people.values():
        for spouse_id in person.spouse_ids:
            if spouse_id in tree.people:
                assert person.id in tree.people[spouse_id].spouse_ids, (
                    f"{spouse_id} does not list {person.id} back"
                )


# ============================================================================
# Spouse Link Tests
# ============================================================================

class TestSpouseLinks:
    """Tests for reciprocal spouse linking and unlinking."""

    def test_adding_spouse_links_both_sides(self, tree):
        updated = edit(tree, "3", spouse_ids=["4"])
        new_tree, touched = apply_person_update(tree, tree.people["3"], updated)

        assert new_tree.people["3"].spouse_ids == ["4"]
        assert new_tree.people["4"].spouse_ids == ["3"]
        assert touched == ["4"]
        assert_spouses_symmetric(new_tree)

    def test_removing_spouse_unlinks_both_sides(self, tree):
        """Removing Guinevere from Arthur leaves the children's parents untouched."""
        updated = edit(tree, "1", spouse_ids=[])
        new_tree, touched = apply_person_update(tree, tree.people["1"], updated)

        assert "1" not in new_tree.people["2"].spouse_ids
        assert new_tree.people["3"].father_id == "1"
        assert new_tree.people["3"].mother_id == "2"
        assert touched == ["2"]
        assert_spouses_symmetric(new_tree)

    def test_adding_existing_spouse_is_idempotent(self, tree):
        updated = edit(tree, "1", spouse_ids=["2", "2"])
        new_tree, touched = apply_person_update(tree, tree.people["1"], updated)

        assert new_tree.people["1"].spouse_ids == ["2"]
        assert new_tree.people["2"].spouse_ids == ["1"]
        assert touched == []

    def test_new_spouse_already_listing_person_is_not_duplicated(self, tree):
        tree.people["5"].spouse_ids = ["4"]  # one-sided link left by older data
        updated = edit(tree, "4", spouse_ids=["5"])
        new_tree, touched = apply_person_update(tree, tree.people["4"], updated)

        assert new_tree.people["5"].spouse_ids == ["4"]
        assert touched == []

    def test_replacing_spouse(self, tree):
        updated = edit(tree, "1", spouse_ids=["4"])
        new_tree, touched = apply_person_update(tree, tree.people["1"], updated)

        assert new_tree.people["2"].spouse_ids == []
        assert new_tree.people["4"].spouse_ids == ["1"]
        assert touched == ["2", "4"]
        assert_spouses_symmetric(new_tree)

    def test_self_spouse_is_ignored(self, tree):
        updated = edit(tree, "5", spouse_ids=["5"])
        new_tree, touched = apply_person_update(tree, tree.people["5"], updated)

        assert new_tree.people["5"].spouse_ids == []
        assert touched == []

    def test_dangling_spouse_is_tolerated(self, tree):
        updated = edit(tree, "5", spouse_ids=["missing"])
        new_tree, touched = apply_person_update(tree, tree.people["5"], updated)

        assert new_tree.people["5"].spouse_ids == ["missing"]
        assert "missing" not in new_tree.people
        assert touched == []

    def test_sequence_of_edits_keeps_symmetry(self, tree):
        current = tree
        for person_id, spouses in [("3", ["4"]), ("4", ["3", "5"]), ("3", []), ("5", ["1"])]:
            previous = current.people[person_id]
            updated = edit(current, person_id, spouse_ids=spouses)
            current, _ = apply_person_update(current, previous, updated)
            assert_spouses_symmetric(current)


# ============================================================================
# Child Link Tests
# ============================================================================

class TestChildLinks:
    """Tests for parent -> child link maintenance."""

    def test_setting_parents_appends_child(self, tree):
        updated = edit(tree, "5", mother_id="4")
        new_tree, touched = apply_person_update(tree, tree.people["5"], updated)

        assert new_tree.people["4"].children_ids == ["5"]
        assert touched == ["4"]

    def test_existing_child_link_not_duplicated(self, tree):
        updated = edit(tree, "3", bio="Edited")
        new_tree, touched = apply_person_update(tree, tree.people["3"], updated)

        assert new_tree.people["1"].children_ids == ["3", "4"]
        assert touched == []

    def test_changing_parent_keeps_old_child_link(self, tree):
        """Child links are append-only: the old father keeps the child id."""
        updated = edit(tree, "5", father_id="1")
        new_tree, _ = apply_person_update(tree, tree.people["5"], updated)

        assert "5" in new_tree.people["1"].children_ids
        assert "5" in new_tree.people["3"].children_ids

    def test_child_links_survive_unrelated_edits(self, tree):
        current = tree
        for person_id, changes in [("1", {"bio": "x"}), ("2", {"spouse_ids": []}), ("4", {"birth_place": "Avalon"})]:
            updated = edit(current, person_id, **changes)
            current, _ = apply_person_update(current, current.people[person_id], updated)
        assert current.people["1"].children_ids == ["3", "4"]
        assert current.people["3"].children_ids == ["5"]

    def test_dangling_parent_is_tolerated(self, tree):
        updated = edit(tree, "5", mother_id="missing")
        new_tree, touched = apply_person_update(tree, tree.people["5"], updated)

        assert new_tree.people["5"].mother_id == "missing"
        assert touched == []


# ============================================================================
# Creation & Purity Tests
# ============================================================================

class TestCreation:
    """Tests for new people entering the graph."""

    def test_create_person_defaults(self):
        person = create_person()
        assert person.first_name == UNKNOWN_NAME
        assert person.last_name == UNKNOWN_NAME
        assert person.gender == Gender.OTHER
        assert person.spouse_ids == []
        assert person.children_ids == []
        assert person.father_id is None
        assert person.mother_id is None

    def test_create_person_copies_partial_fields(self):
        person = create_person({
            "first_name": "Lancelot",
            "last_name": "du Lac",
            "gender": Gender.MALE,
            "birth_date": "1925-01-01",
            "bio": "Knight.",
        })
        assert person.full_name == "Lancelot du Lac"
        assert person.gender == Gender.MALE
        assert person.birth_date == "1925-01-01"
        assert person.bio == "Knight."

    def test_create_person_generates_unique_ids(self):
        assert create_person().id != create_person().id

    def test_new_person_with_previous_none(self, tree):
        newcomer = create_person({"first_name": "Elaine", "last_name": "Astolat"})
        newcomer.spouse_ids = ["5"]
        newcomer.father_id = "3"

        new_tree, touched = apply_person_update(tree, None, newcomer)

        assert newcomer.id in new_tree.people
        assert new_tree.people["5"].spouse_ids == [newcomer.id]
        assert newcomer.id in new_tree.people["3"].children_ids
        assert set(touched) == {"3", "5"}

    def test_input_graph_is_not_mutated(self, tree):
        snapshot = tree.model_dump()
        updated = edit(tree, "1", spouse_ids=["4"])
        apply_person_update(tree, tree.people["1"], updated)

        assert tree.model_dump() == snapshot

    def test_root_assigned_for_first_person(self):
        person = create_person({"first_name": "First", "last_name": "Person"})
        new_tree, _ = apply_person_update(TreeData(), None, person)
        assert new_tree.root_id == person.id


class TestValidation:
    """Tests for required-field validation."""

    def test_valid_person(self, tree):
        assert person_validation_errors(tree.people["1"]) == []

    def test_empty_names_rejected(self, tree):
        person = edit(tree, "1", first_name="  ", last_name="")
        errors = person_validation_errors(person)
        assert len(errors) == 2


# ============================================================================
# Run Tests
# ============================================================================

if __name__ == "__main__":
    pytest.main([__file__, "-v"])
