"""
Shared fixtures.

Every behavioural storage test runs against both backends: a SQLite file
through SqlLedgerStorage and a JSON file through LocalLedgerStorage.
"""

import pytest

from finledger.config import DatabaseSettings
from finledger.services.storage import LocalLedgerStorage, SqlClient, SqlLedgerStorage

from factories import USER


@pytest.fixture
def sql_client(tmp_path):
    client = SqlClient(DatabaseSettings(url=f"sqlite:///{tmp_path / 'ledger.db'}"))
    yield client
    client.dispose()


@pytest.fixture(params=["sql", "local"])
def storage(request, tmp_path):
    """Each backend, bound to a fresh store in the test's temp dir."""
    if request.param == "sql":
        client = SqlClient(DatabaseSettings(url=f"sqlite:///{tmp_path / 'ledger.db'}"))
        yield SqlLedgerStorage(client)
        client.dispose()
    else:
        yield LocalLedgerStorage(data_path=tmp_path / "ledger.json", local_user_id=USER)
