import threading

from hubwire.invokeresult import InvokeResult, merge_results


def _blocking_values(block):
    yield 1
    block.wait(5)
    yield 2


def test_values_and_errors_are_all_delivered():
    err = RuntimeError("bad")
    results = list(merge_results(threading.Event(), [1, 2, 3], [err]))
    assert len(results) == 4
    assert [r.value for r in results if r.error is None] == [1, 2, 3]
    assert [r.error for r in results if r.error is not None] == [err]


def test_value_order_is_preserved():
    results = list(merge_results(None, ["a", "b", "c", "d"], []))
    assert [r.value for r in results] == ["a", "b", "c", "d"]
    assert all(r.error is None for r in results)


def test_error_results_carry_no_value():
    err = ValueError("x")
    results = list(merge_results(None, [], [err]))
    assert results == [InvokeResult(error=err)]
    assert results[0].value is None


def test_done_already_set_yields_nothing():
    done = threading.Event()
    done.set()
    assert list(merge_results(done, [1, 2], [ValueError()])) == []


def test_done_ends_stream_while_source_blocks():
    done = threading.Event()
    block = threading.Event()
    it = merge_results(done, _blocking_values(block), [])
    assert next(it) == InvokeResult(value=1)
    done.set()
    assert list(it) == []
    block.set()


def test_empty_sources_end_immediately():
    assert list(merge_results(threading.Event(), [], [])) == []