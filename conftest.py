import pytest


@pytest.fixture(autouse=True)
def _django_runner_db_semantics(django_db_blocker):
    # Match Django's own test runner: SimpleTestCase still rejects queries via
    # its own guards, but signal handlers (e.g. close_old_connections on
    # response.close()) may inspect a connection left open by earlier TestCases.
    with django_db_blocker.unblock():
        yield
