import pytest

from config.settings import Settings
from services.result_store import InMemoryResultStore
from tests.helpers import API_URL, RAW_URL, FakeGitHubAPI


@pytest.fixture
def settings():
    return Settings(
        mongo_url='mongodb://localhost:27017',
        db_name='keyscan_test',
        github_api_url=API_URL,
        github_raw_url=RAW_URL,
        github_token='',
        vault_encryption_key='test-vault-secret',
        max_concurrent_jobs=3,
        scan_batch_size=5,
        max_scan_files=1000,
        max_file_size=1048576,
        max_retained_jobs=1000
    )


@pytest.fixture
def store():
    return InMemoryResultStore()


@pytest.fixture
def fake_github():
    return FakeGitHubAPI()
