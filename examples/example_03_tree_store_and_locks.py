"""Example 03: Tree Collections and Distributed Locks.

Tree backends (S3 or in-memory) store one node per record under a collection
path. This example shows:
- Scalar and keyed-list value shapes
- Single-filter queries in tree ordering
- Callbacks that roll back a transactional update
- DistributedLock guarding a critical section

Set RECORDSTORE_EXAMPLE_S3_URI (e.g. s3://my-bucket/demo) to run against S3;
otherwise the in-memory tree client is used.
"""

import os

from recordstore import (
    DataStoreOptions,
    DistributedLock,
    RecordStoreConfig,
    RecordUpdateFailedError,
    collection_path,
    open_client,
    open_datastore,
)


def main():
    config = RecordStoreConfig.from_env()
    client = open_client(os.getenv("RECORDSTORE_EXAMPLE_S3_URI", "memory://"), config)

    print("=" * 80)
    print("SCALAR VALUES")
    print("=" * 80)
    scores = open_datastore(
        client,
        collection_path("/games/{game_id}/scores", game_id="chess"),
        DataStoreOptions(
            create_id_option="manual_reject_id_conflicts",
            value_shape="number",
            require_transaction=True,
            create_if_not_exists=True,
        ),
    )
    for player, score in [("ann", 1200), ("ben", 1450), ("cat", 980), ("dan", 1450)]:
        scores.transactional_update(player, score)

    result = scores.query({"value_gte": 1000}, ["value", "DESC"])
    for record in result.data:
        print(f"  {record['id']}: {record['value']}")

    def audit(record_id, value):
        raise RuntimeError(f"audit log unavailable for {record_id}")

    try:
        scores.transactional_update("ann", 2000, callback=audit)
    except RecordUpdateFailedError as e:
        print(f"  Update rolled back: {e.message}")
    print(f"  ann is still {scores.read('ann')['value']}")

    print("\n" + "=" * 80)
    print("KEYED LISTS")
    print("=" * 80)
    carts = open_datastore(
        client,
        "carts",
        DataStoreOptions(create_id_option="manual_allow_id_conflicts", value_shape="array"),
    )
    cart = carts.create_with_id("cart", [{"id": "sku-1", "qty": 2}])
    carts.update(cart["id"], [{"id": "sku-2", "qty": 1}])
    print(f"  {cart['id']}: {carts.read(cart['id'])['value']}")

    print("\n" + "=" * 80)
    print("LOCKS")
    print("=" * 80)
    lock = DistributedLock.from_config(client, config)
    total = lock.perform_operation("games/chess/recompute", lambda: scores.query().total_count)
    print(f"  Recomputed {total} scores while holding the lock (state: {lock.state.value})")

    client.close()


if __name__ == "__main__":
    main()
