"""Example 01: Basic Usage - recordstore Fundamentals.

This example demonstrates the fundamental operations:
- Opening a SQLite document backend from a storage URI
- Configuring a collection with DataStoreOptions
- create / create_with_id / read / update / delete
- Filtered, sorted range queries
"""

from datetime import datetime, timezone

from recordstore import (
    CreateIdOption,
    DataStoreOptions,
    InvalidDataError,
    RecordCreateFailedError,
    open_client,
    open_datastore,
)


def main():
    """Run the basic usage example."""
    print("=" * 80)
    print("RECORDSTORE BASIC USAGE EXAMPLE")
    print("=" * 80)

    # Step 1: Open a backend client
    # sqlite:///name is relative to the working directory.
    client = open_client("sqlite:///basic_usage.db")
    print("\n✓ Backend opened: basic_usage.db")

    # Step 2: Configure collections
    # Each DataStore owns one collection and an immutable set of options.
    people = open_datastore(
        client,
        "people",
        DataStoreOptions(
            create_id_option=CreateIdOption.MANUAL_REJECT_ID_CONFLICTS,
            read_only_fields={"email"},
        ),
    )
    notes = open_datastore(client, "notes")

    print("\n" + "=" * 80)
    print("CREATING RECORDS")
    print("=" * 80)

    for handle, name, age, city in [
        ("alice", "Alice Smith", 32, "San Francisco"),
        ("bob", "Bob Johnson", 28, "New York"),
        ("carol", "Carol Williams", 35, "Austin"),
    ]:
        try:
            people.create_with_id(
                handle,
                {
                    "name": name,
                    "email": f"{handle}@example.com",
                    "age": age,
                    "city": city,
                    "joined": datetime(2024, 1, 1, tzinfo=timezone.utc),
                },
            )
        except RecordCreateFailedError:
            print(f"  (record '{handle}' already exists from a previous run)")
    print("✓ People stored under caller-chosen ids")

    note = notes.create({"text": "remember the milk"})
    print(f"✓ Note stored under generated id {note['id']}")

    print("\n" + "=" * 80)
    print("UPDATING RECORDS")
    print("=" * 80)

    previous = people.update("bob", {"age": 29})
    print(f"  Bob was {previous['age']}, now {people.read('bob')['age']}")

    try:
        people.update("bob", {"email": "someone-else@example.com"})
    except InvalidDataError as e:
        print(f"  Read-only field protected: {e.message}")

    print("\n" + "=" * 80)
    print("QUERYING RECORDS")
    print("=" * 80)

    print("\n1. People aged 30 or more, oldest first:")
    result = people.query({"age_gte": 30}, {"field": "age", "direction": "DESC"})
    for record in result.data:
        print(f"   - {record['name']}, age {record['age']}")

    print("\n2. Second and third person by name:")
    result = people.query(sort=["name", "ASC"], range=[1, 2])
    print(f"   Records {result.range_start}-{result.range_end} of {result.total_count}")
    for record in result.data:
        print(f"   - {record['name']}")

    print("\n3. People in New York or Austin:")
    result = people.query({"city_eq_any": ["New York", "Austin"]})
    for record in result.data:
        print(f"   - {record['name']} ({record['city']})")

    deleted = notes.delete(note["id"])
    print(f"\n✓ Deleted note: {deleted['text']}")

    client.close()
    print("\n" + "=" * 80)
    print("EXAMPLE COMPLETE")
    print("=" * 80)


if __name__ == "__main__":
    main()
