import threading
import time

import file_lock


def test_second_handle_waits_for_first(tmp_path):
    path = tmp_path / "current-py"
    path.write_bytes(b"")
    result = {}

    with open(path, "ab") as first, open(path, "ab") as second:
        file_lock.lock_exclusive(first)

        def contender():
            started = time.monotonic()
            result["retries"] = file_lock.lock_exclusive(second, retry_max_s=0.01)
            result["waited"] = time.monotonic() - started
            file_lock.unlock(second)

        thread = threading.Thread(target=contender)
        thread.start()
        time.sleep(0.1)
        file_lock.unlock(first)
        thread.join(timeout=5)

    assert result["retries"] >= 1
    assert result["waited"] >= 0.05


def test_locked_context_releases_on_error(tmp_path):
    path = tmp_path / "current-py"
    path.write_bytes(b"")

    with open(path, "ab") as first, open(path, "ab") as second:
        try:
            with file_lock.locked(first):
                raise RuntimeError("boom")
        except RuntimeError:
            pass

        assert file_lock.lock_exclusive(second) == 0
        file_lock.unlock(second)
