"""
Example 03: Streaming

This example demonstrates iterating a large result row by row without
materializing it, with typed tuples and with raw row views.
"""

from row_stream import Connection, ExpiredRowError

NUMBERS = (
    "WITH RECURSIVE n(x) AS (SELECT 1 UNION ALL SELECT x + 1 FROM n WHERE x < CAST(:limit AS INTEGER)) "
    "SELECT x, x * x FROM n"
)


def main():
    with Connection("sqlite://") as conn:
        print("=== Streaming ===\n")

        with conn.transaction() as tx:
            # Typed stream: each row arrives as a tuple of Python values
            total = 0
            stream = tx.stream(NUMBERS, int, int, params={"limit": 100000})
            for number, square in stream:
                total += square
            print(f"Sum of squares over {stream.rows_read} rows: {total}\n")

            # Stopping early drains the rest so the connection can be reused
            with tx.stream(NUMBERS, int, int, params={"limit": 100000}) as stream:
                for number, square in stream:
                    if square > 50:
                        print(f"First square above 50: {number}^2 = {square}")
                        break
            print(f"Stream closed: {stream.closed}\n")

            # Untyped stream: rows are views valid for one step only
            previous = None
            for row in tx.stream(NUMBERS, params={"limit": 3}):
                print(f"  row {row.position}: x={row['x']} as int {row.value('x', int)}")
                previous = row
            try:
                previous["x"]
            except ExpiredRowError as e:
                print(f"\nKeeping a row view is an error: {e}")


if __name__ == "__main__":
    main()
