"""GEDCOM 5.5.1 export and import for the family tree graph.

The graph only stores parent pointers and spouse lists, so families (FAM
records) are inferred on export:

- a person with a known father or mother is a child of ``F_<father>_<mother>``
  (``U`` standing in for an unknown parent), shared by all full siblings
- two spouses share one family. When they are also the parents of someone,
  that child family is reused so the couple gets exactly one FAM record;
  otherwise the key is ``F_<husband>_<wife>``.

Husband/wife roles come from gender (Male husband, Female wife). When genders
collide or are unknown the sorted id order decides, which keeps repeated
exports byte-identical.
"""

import logging
import os
import re
import tempfile
from dataclasses import dataclass, field
from datetime import date, datetime

from gedcom.element.element import Element
from gedcom.element.family import FamilyElement
from gedcom.element.individual import IndividualElement
from gedcom.parser import Parser
from pydantic import BaseModel, Field

from models import Gender, Person, TreeData

logger = logging.getLogger("familytree.gedcom")

SOURCE_NAME = "FamilyTreeAI"
GEDCOM_VERSION = "5.5.1"
UNKNOWN_PARENT = "U"
UNKNOWN_NAME = "Unknown"

GEDCOM_MONTHS = ["JAN", "FEB", "MAR", "APR", "MAY", "JUN",
                 "JUL", "AUG", "SEP", "OCT", "NOV", "DEC"]

SEX_CODES = {Gender.MALE: "M", Gender.FEMALE: "F", Gender.OTHER: "U"}
GENDERS_BY_SEX = {"M": Gender.MALE, "F": Gender.FEMALE}

_XREF_PATTERN = re.compile(r"^@[^@]+@$")


class GedcomDecodeError(ValueError):
    """Raised when GEDCOM input cannot be parsed at all."""


class GedcomImport(BaseModel):
    """Result of decoding a GEDCOM file."""
    tree: TreeData
    warnings: list[str] = Field(default_factory=list)


@dataclass
class _Family:
    husband: str | None = None
    wife: str | None = None
    children: list[str] = field(default_factory=list)


# ============================================================================
# Dates
# ============================================================================

def format_gedcom_date(date_str: str) -> str:
    """Convert YYYY-MM-DD to GEDCOM ``D MON YYYY``; anything unparseable is returned as is."""
    try:
        parsed = datetime.strptime(date_str.strip(), "%Y-%m-%d")
    except ValueError:
        return date_str
    return f"{parsed.day} {GEDCOM_MONTHS[parsed.month - 1]} {parsed.year}"


def parse_gedcom_date(value: str) -> str:
    """Convert GEDCOM ``D MON YYYY`` back to YYYY-MM-DD; other forms are kept verbatim."""
    parts = value.strip().upper().split()
    if len(parts) != 3 or parts[1] not in GEDCOM_MONTHS:
        return value
    day, month, year = parts
    if not (day.isdigit() and year.isdigit() and len(year) == 4):
        return value
    try:
        return date(int(year), GEDCOM_MONTHS.index(month) + 1, int(day)).isoformat()
    except ValueError:
        return value


# ============================================================================
# Encoding
# ============================================================================

def _add_child(parent: Element, tag: str, value: str = "") -> Element:
    element = Element(level=parent.get_level() + 1, pointer="", tag=tag, value=value)
    parent.add_child_element(element)
    return element


def _element_lines(element: Element, level: int, lines: list[str]) -> None:
    """Recursively convert an element to GEDCOM lines."""
    pointer = element.get_pointer() or ""
    tag = element.get_tag()
    value = element.get_value() or ""

    line = f"{level} {pointer} {tag}" if pointer else f"{level} {tag}"
    if value:
        line += f" {value}"
    lines.append(line)

    for child in element.get_child_elements():
        _element_lines(child, level + 1, lines)


def _individual_xref(person_id: str) -> str:
    return f"@I{person_id}@"


def _assign_roles(a: str, b: str, people: dict[str, Person]) -> tuple[str, str]:
    """Pick (husband, wife) for a couple by gender, falling back to sorted id order."""
    first, second = sorted((a, b))
    first_gender = people[first].gender
    second_gender = people[second].gender

    if first_gender == Gender.MALE and second_gender != Gender.MALE:
        return first, second
    if second_gender == Gender.MALE and first_gender != Gender.MALE:
        return second, first
    if first_gender == Gender.FEMALE and second_gender != Gender.FEMALE:
        return second, first
    if second_gender == Gender.FEMALE and first_gender != Gender.FEMALE:
        return first, second
    return first, second


def _known_parent(person: Person, parent_id: str | None, people: dict[str, Person], role: str) -> str | None:
    if not parent_id:
        return None
    if parent_id not in people:
        logger.warning(f"Person {person.id} has unknown {role} {parent_id}, exporting as unknown parent")
        return None
    return parent_id


class _FamilyKeys:
    """Hands out one FAM key per (husband, wife) couple.

    Keys join ids with ``_``, so ids that themselves contain ``_`` can spell
    the same key for different couples; later couples get a ``-2``, ``-3``
    suffix instead of being merged.
    """

    def __init__(self):
        self._by_couple: dict[tuple[str | None, str | None], str] = {}
        self._taken: set[str] = set()

    def key_for(self, husband: str | None, wife: str | None) -> str:
        couple = (husband, wife)
        if couple in self._by_couple:
            return self._by_couple[couple]
        base = f"F_{husband or UNKNOWN_PARENT}_{wife or UNKNOWN_PARENT}"
        key = base
        suffix = 2
        while key in self._taken:
            key = f"{base}-{suffix}"
            suffix += 1
        self._taken.add(key)
        self._by_couple[couple] = key
        return key


def _infer_families(people: dict[str, Person]) -> tuple[dict[str, _Family], dict[str, str], dict[str, list[str]]]:
    """
    Infer FAM records from parent pointers and spouse lists.

    Returns:
        (families by key in first-seen order, child family key per person,
         spouse family keys per person)
    """
    family_keys = _FamilyKeys()
    parents_of: dict[str, tuple[str | None, str | None]] = {}
    couples: dict[frozenset, tuple[str, str]] = {}
    for person in people.values():
        father = _known_parent(person, person.father_id, people, "father")
        mother = _known_parent(person, person.mother_id, people, "mother")
        parents_of[person.id] = (father, mother)
        if father and mother and father != mother:
            couples.setdefault(frozenset((father, mother)), (father, mother))

    families: dict[str, _Family] = {}
    child_family: dict[str, str] = {}
    spouse_families: dict[str, list[str]] = {}

    for person in people.values():
        father, mother = parents_of[person.id]
        if father or mother:
            key = family_keys.key_for(father, mother)
            family = families.setdefault(key, _Family(husband=father, wife=mother))
            family.children.append(person.id)
            child_family[person.id] = key

        keys = spouse_families.setdefault(person.id, [])
        for spouse_id in person.spouse_ids:
            if spouse_id == person.id:
                continue
            if spouse_id not in people:
                logger.warning(f"Person {person.id} lists unknown spouse {spouse_id}, skipping")
                continue
            # Spouses who are also co-parents share their children's family
            husband, wife = couples.get(frozenset((person.id, spouse_id))) or _assign_roles(
                person.id, spouse_id, people
            )
            key = family_keys.key_for(husband, wife)
            families.setdefault(key, _Family(husband=husband, wife=wife))
            if key not in keys:
                keys.append(key)

    return families, child_family, spouse_families


def _header_record() -> Element:
    head = Element(level=0, pointer="", tag="HEAD", value="")
    _add_child(head, "SOUR", SOURCE_NAME)
    gedc = _add_child(head, "GEDC")
    _add_child(gedc, "VERS", GEDCOM_VERSION)
    _add_child(gedc, "FORM", "LINEAGE-LINKED")
    _add_child(head, "CHAR", "UTF-8")
    return head


def _event(parent: Element, tag: str, event_date: str | None, place: str | None) -> None:
    if not (event_date or place):
        return
    event = _add_child(parent, tag)
    if event_date:
        _add_child(event, "DATE", format_gedcom_date(event_date))
    if place:
        _add_child(event, "PLAC", place)


def _individual_record(person: Person, child_family: str | None, spouse_families: list[str]) -> IndividualElement:
    indi = IndividualElement(level=0, pointer=_individual_xref(person.id), tag="INDI", value="")

    name = _add_child(indi, "NAME", f"{person.first_name} /{person.last_name}/")
    _add_child(name, "GIVN", person.first_name)
    _add_child(name, "SURN", person.last_name)
    _add_child(indi, "SEX", SEX_CODES.get(person.gender, "U"))

    _event(indi, "BIRT", person.birth_date, person.birth_place)
    _event(indi, "DEAT", person.death_date, person.death_place)

    if person.bio:
        flattened = person.bio.replace("\r\n", " ").replace("\n", " ").replace("\r", " ")
        _add_child(indi, "NOTE", flattened)

    if child_family:
        _add_child(indi, "FAMC", f"@{child_family}@")
    for key in spouse_families:
        _add_child(indi, "FAMS", f"@{key}@")

    return indi


def _family_record(key: str, family: _Family) -> FamilyElement:
    fam = FamilyElement(level=0, pointer=f"@{key}@", tag="FAM", value="")
    if family.husband:
        _add_child(fam, "HUSB", _individual_xref(family.husband))
    if family.wife:
        _add_child(fam, "WIFE", _individual_xref(family.wife))
    for child_id in family.children:
        _add_child(fam, "CHIL", _individual_xref(child_id))
    return fam


def encode_gedcom(tree: TreeData) -> str:
    """Export the whole tree as GEDCOM 5.5.1 text (deterministic for a given input order)."""
    people = tree.people
    families, child_family, spouse_families = _infer_families(people)

    records: list[Element] = [_header_record()]
    for person in people.values():
        records.append(
            _individual_record(person, child_family.get(person.id), spouse_families.get(person.id, []))
        )
    for key, family in families.items():
        records.append(_family_record(key, family))
    records.append(Element(level=0, pointer="", tag="TRLR", value=""))

    lines: list[str] = []
    for record in records:
        _element_lines(record, 0, lines)

    logger.info(f"Encoded GEDCOM with {len(people)} individuals and {len(families)} families")
    return "\n".join(lines)


# ============================================================================
# Decoding
# ============================================================================

def _parse_content(content: str) -> Parser:
    """Parse GEDCOM text with python-gedcom (which reads from a file path)."""
    content = content.lstrip("\ufeff")
    lines = [line for line in content.splitlines() if line.strip()]
    if not lines:
        raise GedcomDecodeError("GEDCOM content is empty")

    with tempfile.NamedTemporaryFile(mode="w", suffix=".ged", delete=False, encoding="utf-8") as f:
        f.write("\n".join(lines) + "\n")
        temp_path = f.name

    try:
        parser = Parser()
        parser.parse_file(temp_path, strict=False)
        return parser
    except Exception as e:
        raise GedcomDecodeError(f"Failed to parse GEDCOM content: {e}") from e
    finally:
        os.unlink(temp_path)


def _value(element: Element) -> str:
    return (element.get_value() or "").strip()


def _first_child(element: Element, tag: str) -> Element | None:
    for child in element.get_child_elements():
        if child.get_tag() == tag:
            return child
    return None


def _text_with_continuations(element: Element) -> str:
    text = element.get_value() or ""
    for child in element.get_child_elements():
        if child.get_tag() == "CONC":
            text += child.get_value() or ""
        elif child.get_tag() == "CONT":
            text += "\n" + (child.get_value() or "")
    return text


def _split_name(name_element: Element) -> tuple[str, str]:
    given = _first_child(name_element, "GIVN")
    surname = _first_child(name_element, "SURN")
    raw = _value(name_element)

    raw_given, _, rest = raw.partition("/")
    raw_surname = rest.split("/")[0]

    first_name = _value(given) if given is not None else raw_given.strip()
    last_name = _value(surname) if surname is not None else raw_surname.strip()
    return first_name, last_name


def _event_fields(indi: Element, tag: str) -> tuple[str | None, str | None]:
    event = _first_child(indi, tag)
    if event is None:
        return None, None
    date_element = _first_child(event, "DATE")
    place_element = _first_child(event, "PLAC")
    event_date = None
    if date_element is not None and _value(date_element):
        event_date = parse_gedcom_date(_value(date_element))
    place = None
    if place_element is not None and _value(place_element):
        place = _value(place_element)
    return event_date, place


def _internal_id(xref: str, taken: set[str]) -> str:
    """Derive a person id from a cross-reference (``@I42@`` -> ``42``)."""
    stripped = xref.strip("@")
    candidate = stripped[1:] if stripped.startswith("I") and len(stripped) > 1 else stripped
    if candidate in taken:
        candidate = stripped
    suffix = 2
    base = candidate
    while candidate in taken:
        candidate = f"{base}_{suffix}"
        suffix += 1
    return candidate


def decode_gedcom(content: str) -> GedcomImport:
    """
    Import GEDCOM text into a tree.

    Missing optional tags are tolerated. Family references to undefined
    individuals are reported in ``warnings`` and skipped.

    Raises:
        GedcomDecodeError: the content is empty, not GEDCOM at all, or has no individuals
    """
    parser = _parse_content(content)
    warnings: list[str] = []

    root_elements = parser.get_root_child_elements()
    if not root_elements or root_elements[0].get_tag() != "HEAD":
        raise GedcomDecodeError("Not a GEDCOM file: content does not start with a 0 HEAD record")

    notes_by_xref = {
        element.get_pointer(): _text_with_continuations(element)
        for element in root_elements
        if element.get_tag() == "NOTE" and element.get_pointer()
    }

    people: dict[str, Person] = {}
    ids_by_xref: dict[str, str] = {}
    spouse_family_refs: dict[str, set[str]] = {}

    for element in root_elements:
        if not isinstance(element, IndividualElement):
            continue
        xref = element.get_pointer()
        if not xref:
            warnings.append("Skipped an individual record without a cross-reference id")
            continue
        if xref in ids_by_xref:
            warnings.append(f"Duplicate individual {xref} ignored")
            continue

        person_id = _internal_id(xref, set(people))
        ids_by_xref[xref] = person_id

        name_element = _first_child(element, "NAME")
        first_name, last_name = _split_name(name_element) if name_element is not None else ("", "")

        sex_element = _first_child(element, "SEX")
        gender = Gender.OTHER
        if sex_element is not None:
            gender = GENDERS_BY_SEX.get(_value(sex_element).upper(), Gender.OTHER)

        birth_date, birth_place = _event_fields(element, "BIRT")
        death_date, death_place = _event_fields(element, "DEAT")

        notes = []
        for child in element.get_child_elements():
            if child.get_tag() != "NOTE":
                continue
            value = _value(child)
            if _XREF_PATTERN.match(value):
                if value in notes_by_xref:
                    notes.append(notes_by_xref[value])
                else:
                    warnings.append(f"Individual {xref} references undefined note {value}")
            else:
                notes.append(_text_with_continuations(child))

        spouse_family_refs[person_id] = {
            _value(child) for child in element.get_child_elements() if child.get_tag() == "FAMS"
        }

        people[person_id] = Person(
            id=person_id,
            first_name=first_name or UNKNOWN_NAME,
            last_name=last_name or UNKNOWN_NAME,
            gender=gender,
            birth_date=birth_date,
            birth_place=birth_place,
            death_date=death_date,
            death_place=death_place,
            bio="\n".join(n for n in notes if n) or None,
        )

    if not people:
        raise GedcomDecodeError("GEDCOM content contains no individuals")

    family_count = 0
    for element in root_elements:
        if not isinstance(element, FamilyElement):
            continue
        family_count += 1
        fam_xref = element.get_pointer()

        members: dict[str, list[str]] = {"HUSB": [], "WIFE": [], "CHIL": []}
        for child in element.get_child_elements():
            tag = child.get_tag()
            if tag not in members:
                continue
            ref = _value(child)
            person_id = ids_by_xref.get(ref)
            if person_id is None:
                message = f"Family {fam_xref} references undefined individual {ref} ({tag})"
                logger.warning(message)
                warnings.append(message)
                continue
            members[tag].append(person_id)

        declares_children = any(child.get_tag() == "CHIL" for child in element.get_child_elements())
        husband = members["HUSB"][0] if members["HUSB"] else None
        wife = members["WIFE"][0] if members["WIFE"] else None

        for child_id in members["CHIL"]:
            child = people[child_id]
            if husband and husband != child_id:
                if child.father_id and child.father_id != husband:
                    warnings.append(f"Individual {child_id} already has a father, ignoring family {fam_xref}")
                else:
                    child.father_id = husband
                    if child_id not in people[husband].children_ids:
                        people[husband].children_ids.append(child_id)
            if wife and wife != child_id:
                if child.mother_id and child.mother_id != wife:
                    warnings.append(f"Individual {child_id} already has a mother, ignoring family {fam_xref}")
                else:
                    child.mother_id = wife
                    if child_id not in people[wife].children_ids:
                        people[wife].children_ids.append(child_id)

        # Co-parents are only spouses when the family is declared as a spouse family;
        # a couple with no children can only be a marriage
        if husband and wife and husband != wife:
            declared = fam_xref in spouse_family_refs[husband] or fam_xref in spouse_family_refs[wife]
            if declared or not declares_children:
                if wife not in people[husband].spouse_ids:
                    people[husband].spouse_ids.append(wife)
                if husband not in people[wife].spouse_ids:
                    people[wife].spouse_ids.append(husband)

    root_id = next(iter(people), None)
    logger.info(
        f"Decoded GEDCOM with {len(people)} individuals and {family_count} families "
        f"({len(warnings)} warnings)"
    )
    return GedcomImport(tree=TreeData(people=people, root_id=root_id), warnings=warnings)
