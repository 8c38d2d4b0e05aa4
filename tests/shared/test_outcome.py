from todo_mcp.shared.outcome import NotFound, Ok, StorageFailure


def test_ok_map():
    assert Ok(2).map(lambda value: value * 3) == Ok(6)


def test_failures_pass_through_map():
    not_found = NotFound("milk")
    failure = StorageFailure("Failed to save todo", "disk full")

    assert not_found.map(lambda value: value * 3) is not_found
    assert failure.map(lambda value: value * 3) is failure


def test_messages():
    assert NotFound("milk").message == "No todo found with title similar to milk"
    assert StorageFailure("Failed to save todo", "disk full").message == "Failed to save todo: disk full"
