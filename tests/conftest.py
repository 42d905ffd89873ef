"""Test session configuration.

Loads the project `.env` file so integration tests can read `DB_MODE` and
`PG*` settings without exporting them in the shell.
"""

from __future__ import annotations

import pytest
from dotenv import load_dotenv


@pytest.fixture(scope="session", autouse=True)
def _load_dotenv_for_tests() -> None:
    # no error if .env is absent
    load_dotenv()
