"""
Example 01: Basic Query Execution

This example demonstrates executing queries and reading Result / Row / Field values.
"""

from typing import Optional

from row_stream import Connection, ConnectionConfig


def main():
    config = ConnectionConfig(driver="sqlite", database=":memory:")

    with Connection(config) as conn:
        # Set up the database with some test data
        with conn.transaction() as tx:
            tx.execute("""
                CREATE TABLE users (
                    id INTEGER PRIMARY KEY,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL,
                    nickname TEXT
                )
            """)
            tx.execute("INSERT INTO users (name, email, nickname) VALUES ('Alice', 'alice@example.com', 'ally')")
            tx.execute("INSERT INTO users (name, email) VALUES ('Bob', 'bob@example.com')")
            tx.commit()

        print("=== Basic Query Execution ===\n")

        with conn.transaction(read_only=True) as tx:
            # execute: the complete result, indexable like a sequence
            result = tx.execute("SELECT id, name, nickname FROM users ORDER BY id")
            print(f"execute result: {result}")
            for row in result:
                user_id = row["id"].convert(int)
                nickname = row["nickname"].convert(Optional[str])
                print(f"  - #{user_id} {row['name']} (nickname: {nickname})")
            print()

            # Convert whole rows at once
            print(f"convert: {result.convert(int, str, Optional[str])}\n")

            # Named parameters
            row = tx.query_one("SELECT name, email FROM users WHERE id = :id", params={"id": 2})
            print(f"query_one result: {row.to_dict()}\n")

            # Single values
            count = tx.query_value("SELECT COUNT(*) FROM users", int)
            print(f"query_value result: {count} total users\n")

            # NULL handling
            field = tx.execute("SELECT nickname FROM users WHERE id = 2").one_field()
            print(f"is_null: {field.is_null}, with default: {field.convert(str, default='-')}")


if __name__ == "__main__":
    main()
