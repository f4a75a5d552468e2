import logging
import os
import pathlib
import sys
import pytest


# Ensure repo root is on PYTHONPATH for direct package imports (e.g. `import cctp_relay`).
_REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from cctp_relay.adapters import (  # noqa: E402
    Funds,
    GuardianSet,
    InMemoryBurnMint,
    InMemoryMessageRelay,
)
from cctp_relay.config import ConfigManager  # noqa: E402
from cctp_relay.ledger import ReplayLedger  # noqa: E402
from cctp_relay.observability import ROOT_LOGGER_NAME  # noqa: E402

TOKEN = b"\x01" * 32
SENDER = b"\x02" * 32
RECIPIENT = b"\x03" * 32
CALLER = b"\x04" * 32

SOURCE_DOMAIN = 1
DESTINATION_DOMAIN = 2
RELAY_CHAIN_ID = 21


def _env_flag(name: str) -> bool:
    v = (os.environ.get(name) or '').strip().lower()
    return v in {'1', 'true', 'yes', 'y', 'on'}


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "slow: slow correctness tests (skipped unless CCTP_RELAY_RUN_SLOW=1)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    run_slow = _env_flag('CCTP_RELAY_RUN_SLOW')

    for item in items:
        if 'slow' in item.keywords and not run_slow:
            item.add_marker(pytest.mark.skip(reason='slow tests skipped; set CCTP_RELAY_RUN_SLOW=1 to enable'))


@pytest.fixture(autouse=True)
def fresh_config():
    """Every test starts from default configuration and no log handlers."""
    ConfigManager.reset()
    yield
    ConfigManager.reset()
    logging.getLogger(ROOT_LOGGER_NAME).handlers.clear()


@pytest.fixture
def guardians() -> GuardianSet:
    return GuardianSet(size=4)


@pytest.fixture
def source() -> InMemoryBurnMint:
    return InMemoryBurnMint(SOURCE_DOMAIN, TOKEN)


@pytest.fixture
def destination() -> InMemoryBurnMint:
    return InMemoryBurnMint(DESTINATION_DOMAIN, TOKEN)


@pytest.fixture
def message_relay(guardians) -> InMemoryMessageRelay:
    return InMemoryMessageRelay.from_config(guardians)


@pytest.fixture
def ledger() -> ReplayLedger:
    return ReplayLedger()


@pytest.fixture
def funds() -> Funds:
    return Funds(owner=SENDER, amount=1_342_523)
