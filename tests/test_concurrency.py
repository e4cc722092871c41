"""
Concurrent reconciliations against one database.

Each worker opens its own connection, as each HTTP request does.
"""
import threading

from reconciler import reconcile

WORKERS = 8


def run_concurrently(target, count=WORKERS):
    barrier = threading.Barrier(count)
    results = []
    failures = []
    lock = threading.Lock()

    def worker():
        barrier.wait()
        try:
            result = target()
        except Exception as e:
            with lock:
                failures.append(e)
        else:
            with lock:
                results.append(result)

    threads = [threading.Thread(target=worker) for _ in range(count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return results, failures


def test_same_new_pair_creates_one_primary(db_path, rows):
    results, failures = run_concurrently(lambda: reconcile("new@x.com", "999", db_path))

    assert failures == []
    assert len(results) == WORKERS
    stored = rows()
    assert len(stored) == 1
    assert stored[0]["linkPrecedence"] == "primary"
    assert {r.contact.primaryContactId for r in results} == {stored[0]["id"]}


def test_concurrent_bridging_requests_merge_once(db_path, seed, rows):
    a = seed("alice@x.com", "111", minutes=0)
    b = seed("bob@x.com", "222", minutes=5)

    results, failures = run_concurrently(lambda: reconcile("alice@x.com", "222", db_path))

    assert failures == []
    assert {r.contact.primaryContactId for r in results} == {a.id}
    stored = rows()
    assert len(stored) == 2
    assert [r["id"] for r in stored if r["linkPrecedence"] == "primary"] == [a.id]
    assert next(r for r in stored if r["id"] == b.id)["linkedId"] == a.id


def test_concurrent_gap_inserts_once(db_path, seed, rows):
    primary = seed("alice@x.com", "111")

    results, failures = run_concurrently(lambda: reconcile("alice@x.com", "333", db_path))

    assert failures == []
    stored = rows()
    assert len(stored) == 2
    assert stored[1]["linkedId"] == primary.id
    assert {tuple(r.contact.secondaryContactIds) for r in results} == {(stored[1]["id"],)}
