"""Default family loaded into an empty store on first use."""

from models import Gender, Person, TreeData

DEFAULT_ROOT_ID = "1"


def default_tree() -> TreeData:
    """Return a fresh copy of the sample Pendragon family."""
    people = [
        Person(
            id="1",
            first_name="Arthur",
            last_name="Pendragon",
            gender=Gender.MALE,
            birth_date="1920-05-15",
            birth_place="London, UK",
            bio="The patriarch of the family. Served in the navy and loved woodworking.",
            spouse_ids=["2"],
            children_ids=["3", "4"],
        ),
        Person(
            id="2",
            first_name="Guinevere",
            last_name="Pendragon",
            gender=Gender.FEMALE,
            birth_date="1922-08-20",
            spouse_ids=["1"],
            children_ids=["3", "4"],
        ),
        Person(
            id="3",
            first_name="Mordred",
            last_name="Pendragon",
            gender=Gender.MALE,
            birth_date="1950-02-10",
            children_ids=["5"],
            father_id="1",
            mother_id="2",
        ),
        Person(
            id="4",
            first_name="Morgana",
            last_name="Le Fay",
            gender=Gender.FEMALE,
            birth_date="1955-11-30",
            father_id="1",
            mother_id="2",
        ),
        Person(
            id="5",
            first_name="Galahad",
            last_name="Pendragon",
            gender=Gender.MALE,
            birth_date="1980-01-01",
            father_id="3",
            mother_id=None,  # unknown mother
        ),
    ]
    return TreeData(people={p.id: p for p in people}, root_id=DEFAULT_ROOT_ID)
