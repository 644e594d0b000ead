"""Example 02: Range Pagination with Cursors.

This example pages through a collection the way a list UI does:
- Inclusive [start, end] ranges over a sorted, filtered result
- Passing the first/last visible records of the previous page as pageInfo
- Cursors that went stale are ignored and the page is still correct
"""

from recordstore import DataStoreOptions, SQLiteDocumentClient, open_datastore


def _page_info(result):
    if not result.data:
        return None
    return {
        "firstVisible": {"position": result.range_start, "id": result.data[0]["id"]},
        "lastVisible": {"position": result.range_end, "id": result.data[-1]["id"]},
    }


def main():
    client = SQLiteDocumentClient(":memory:")
    orders = open_datastore(
        client, "orders", DataStoreOptions(create_id_option="manual_reject_id_conflicts")
    )
    for i in range(25):
        orders.create_with_id(f"order-{i:03d}", {"total": (i * 37) % 100, "paid": i % 3 != 0})

    sort = {"field": "total", "direction": "DESC"}
    query = {"paid": True}
    page_size = 5

    print("=" * 80)
    print("PAGING FORWARD")
    print("=" * 80)
    page_info = None
    start = 0
    while True:
        result = orders.query(query, sort, [start, start + page_size - 1], page_info)
        if not result.data:
            break
        totals = ", ".join(str(r["total"]) for r in result.data)
        print(f"  [{result.range_start}-{result.range_end}] of {result.total_count}: {totals}")
        page_info = _page_info(result)
        start = result.range_end + 1
        if start >= result.total_count:
            break

    print("\n" + "=" * 80)
    print("STALE CURSOR")
    print("=" * 80)
    first = orders.query(query, sort, [0, 4])
    orders.update(first.data[0]["id"], {"total": -1})
    second = orders.query(query, sort, [5, 9], _page_info(first))
    print(f"  Page after the leader changed: {[r['id'] for r in second.data]}")

    client.close()


if __name__ == "__main__":
    main()
