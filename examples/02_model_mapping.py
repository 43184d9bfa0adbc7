"""
Example 02: Model Mapping

This example demonstrates mapping rows to dataclasses and Pydantic models.
Field annotations decide how each column is converted.
"""

import datetime
from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel

from row_stream import Connection, ModelMapper


@dataclass
class User:
    id: int
    name: str
    joined: datetime.date
    nickname: Optional[str] = None


class UserModel(BaseModel):
    id: int
    name: str
    email: str


def main():
    with Connection("sqlite://") as conn:
        with conn.transaction() as tx:
            tx.execute("CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT, email TEXT, joined TEXT, nickname TEXT)")
            tx.execute(
                "INSERT INTO users (name, email, joined) VALUES (:name, :email, :joined)",
                {"name": "Alice", "email": "alice@example.com", "joined": datetime.date(2023, 5, 17)},
            )
            tx.execute(
                "INSERT INTO users (name, email, joined, nickname) VALUES (:name, :email, :joined, :nickname)",
                {"name": "Bob", "email": "bob@example.com", "joined": datetime.date(2024, 1, 2), "nickname": "bobby"},
            )
            tx.commit()

        print("=== Model Mapping ===\n")

        with conn.transaction() as tx:
            # Dataclass mapping
            result = tx.execute("SELECT id, name, joined, nickname FROM users ORDER BY id")
            users = ModelMapper(User).map_many(result)
            print("Dataclasses:")
            for user in users:
                print(f"  - {user}")
            print()

            # Pydantic mapping with a column alias
            row = tx.execute("SELECT id, name, email AS contact FROM users WHERE id = 1").one_row()
            model = ModelMapper(UserModel, aliases={"contact": "email"}).map_one(row)
            print(f"Pydantic: {model!r}")


if __name__ == "__main__":
    main()
