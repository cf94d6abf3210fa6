import threading

from pub_artifact_registry.api.sessions import SessionStore
from pub_artifact_registry.domain.models.models import PackageArchive, UploadSession


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def _session(session_id, name="demo", version="1.0.0"):
    archive = PackageArchive(
        package_name=name,
        version=version,
        pubspec={"name": name, "version": version},
        data=b"archive",
        archive_sha256="0" * 64,
    )
    return UploadSession(session_id=session_id, archive=archive)


def test_put_get_take():
    store = SessionStore()
    session = _session("s1")

    store.put(session)

    assert store.get("s1") is session
    assert store.take("s1") is session
    assert store.get("s1") is None
    assert store.take("s1") is None


def test_unknown_session():
    store = SessionStore()

    assert store.get("missing") is None
    assert store.take("missing") is None


def test_put_replaces_session_with_same_id():
    store = SessionStore()
    store.put(_session("s1", version="1.0.0"))
    store.put(_session("s1", version="1.0.1"))

    assert store.get("s1").version == "1.0.1"
    assert len(store) == 1


def test_sessions_expire_after_ttl():
    clock = FakeClock()
    store = SessionStore(ttl_seconds=60, clock=clock)
    store.put(_session("old"))

    clock.now += 30
    store.put(_session("new"))
    assert store.get("old") is not None

    clock.now += 31
    assert store.get("old") is None
    assert store.take("new") is not None


def test_created_at_is_set_from_clock():
    clock = FakeClock()
    store = SessionStore(ttl_seconds=60, clock=clock)
    session = _session("s1")

    store.put(session)

    assert session.created_at == 1000.0


def test_zero_ttl_never_expires():
    clock = FakeClock()
    store = SessionStore(ttl_seconds=0, clock=clock)
    store.put(_session("s1"))

    clock.now += 10 ** 9

    assert store.get("s1") is not None


def test_concurrent_put_and_take():
    store = SessionStore()
    taken = []
    lock = threading.Lock()

    def worker(index):
        session_id = f"s{index}"
        store.put(_session(session_id))
        session = store.take(session_id)
        with lock:
            taken.append(session.session_id)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(50)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(taken) == sorted(f"s{i}" for i in range(50))
    assert len(store) == 0


def test_only_one_of_concurrent_takes_gets_the_session():
    store = SessionStore()
    store.put(_session("shared"))
    results = []
    barrier = threading.Barrier(10)

    def worker():
        barrier.wait()
        results.append(store.take("shared"))

    threads = [threading.Thread(target=worker) for _ in range(10)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len([r for r in results if r is not None]) == 1


def test_restore_keeps_original_expiry():
    clock = FakeClock()
    store = SessionStore(ttl_seconds=60, clock=clock)
    store.put(_session("s1"))
    session = store.take("s1")

    clock.now += 50
    assert store.restore(session) is True

    clock.now += 11
    assert store.get("s1") is None


def test_restore_of_expired_session_is_dropped():
    clock = FakeClock()
    store = SessionStore(ttl_seconds=60, clock=clock)
    store.put(_session("s1"))
    session = store.take("s1")

    clock.now += 61

    assert store.restore(session) is False
    assert store.get("s1") is None


def test_restore_does_not_replace_newer_session():
    store = SessionStore()
    store.put(_session("s1", version="1.0.0"))
    taken = store.take("s1")
    store.put(_session("s1", version="1.0.1"))

    assert store.restore(taken) is False
    assert store.get("s1").version == "1.0.1"


def test_oldest_sessions_dropped_beyond_capacity():
    store = SessionStore(max_sessions=2)
    for index in range(3):
        store.put(_session(f"s{index}"))

    assert len(store) == 2
    assert store.get("s0") is None
