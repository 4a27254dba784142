import threading

from agonyl.uid import UidGenerator


def test_first_id_follows_start():
    gen = UidGenerator(0)
    assert gen.next() == 1
    assert gen.next() == 2


def test_custom_start():
    gen = UidGenerator(10)
    assert gen.next() == 11


def test_wraps_at_32_bits():
    gen = UidGenerator(0xFFFFFFFF)
    assert gen.next() == 0


def test_ids_are_consecutive():
    gen = UidGenerator(500)
    ids = [gen.next() for _ in range(50)]
    assert ids == list(range(501, 551))


def test_concurrent_ids_are_unique():
    gen = UidGenerator()
    results = []
    lock = threading.Lock()

    def worker():
        local = [gen.next() for _ in range(100)]
        with lock:
            results.extend(local)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert sorted(results) == list(range(1, 801))
    assert gen.next() == 801