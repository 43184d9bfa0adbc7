"""
Example 04: Transactions

This example demonstrates explicit commit, implicit abort, and failed transactions.
"""

import tempfile
from pathlib import Path

from row_stream import Connection, ConnectionConfig, TransactionAbortedError, UniqueViolation


def count_users(conn):
    with conn.transaction(read_only=True) as tx:
        return tx.query_value("SELECT COUNT(*) FROM users", int)


def main():
    db_path = Path(tempfile.mkdtemp()) / "app.db"
    config = ConnectionConfig(driver="sqlite", database=str(db_path))

    with Connection(config) as conn:
        with conn.transaction() as tx:
            tx.execute("CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT NOT NULL, email TEXT NOT NULL UNIQUE)")
            tx.commit()

        print("=== Transaction Management ===\n")

        # Example 1: Successful transaction
        print("1. Explicit commit:")
        with conn.transaction() as tx:
            tx.execute("INSERT INTO users (name, email) VALUES (:name, :email)", {"name": "Alice", "email": "a@ex.com"})
            tx.commit()
        print(f"   Users: {count_users(conn)}\n")

        # Example 2: Leaving the block without commit rolls back
        print("2. Implicit abort:")
        with conn.transaction() as tx:
            tx.execute("INSERT INTO users (name, email) VALUES (:name, :email)", {"name": "Bob", "email": "b@ex.com"})
        print(f"   Status: {tx.status.value}, users: {count_users(conn)}\n")

        # Example 3: A server error fails the transaction
        print("3. Failed transaction:")
        tx = conn.transaction()
        try:
            tx.execute("INSERT INTO users (name, email) VALUES ('Carol', 'a@ex.com')")
        except UniqueViolation as e:
            print(f"   Server error [{e.sqlstate}]: {e.message}")
        try:
            tx.commit()
        except TransactionAbortedError as e:
            print(f"   Commit refused: {e}")
        print(f"   Status: {tx.status.value}, users: {count_users(conn)}")

    db_path.unlink()


if __name__ == "__main__":
    main()
