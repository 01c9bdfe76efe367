"""Property-based tests for the session pool"""
import threading

from hypothesis import given, strategies as st, settings

from adprovider.services.session_pool import SessionPool

from conftest import FakeFactory


# **Feature: ad-provider, Property 9: Pool mutual exclusion**
# **Validates: Requirements 4.2, 5**
@given(workers=st.integers(min_value=1, max_value=8), rounds=st.integers(min_value=1, max_value=5))
@settings(max_examples=100, deadline=None)
def test_pool_mutual_exclusion(workers: int, rounds: int):
    """A leased session is never used by two threads at once, and every lease is returned."""
    factory = FakeFactory()
    pool = SessionPool(factory)
    failures = []
    start = threading.Barrier(workers)

    def work():
        start.wait()
        for _ in range(rounds):
            with pool.command_session() as session:
                session.enter()
                if session.active != 1:
                    failures.append(session)
                session.leave()

    threads = [threading.Thread(target=work) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert failures == []
    assert all(s.max_active == 1 for s in factory.created)
    assert pool.idle_counts()["command"] == len(factory.created)
    assert len(factory.created) <= workers


def test_idle_session_reused_fifo():
    factory = FakeFactory()
    pool = SessionPool(factory)
    first = pool.acquire_command()
    second = pool.acquire_command()
    pool.release_command(first)
    pool.release_command(second)

    assert pool.acquire_command() is first
    assert pool.acquire_command() is second
    assert len(factory.created) == 2


def test_file_sessions_kept_apart():
    factory = FakeFactory()
    pool = SessionPool(factory)
    with pool.file_session() as session:
        session.upload("C:\\x", b"data")
    assert pool.idle_counts() == {"command": 0, "file": 1}


def test_session_released_on_error():
    pool = SessionPool(FakeFactory())
    try:
        with pool.command_session():
            raise RuntimeError("boom")
    except RuntimeError:
        pass
    assert pool.idle_counts()["command"] == 1


def test_close_closes_idle_and_late_sessions():
    factory = FakeFactory()
    pool = SessionPool(factory)
    idle = pool.acquire_command()
    leased = pool.acquire_command()
    pool.release_command(idle)

    pool.close()
    assert idle.closed

    pool.release_command(leased)
    assert leased.closed
    assert pool.idle_counts() == {"command": 0, "file": 0}
