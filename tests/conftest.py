import pytest

from fakes import FakeIdentityProvider, FakeScripture
from koine_reader.config import SettingsManager
from koine_reader.models import Identity
from koine_reader.services import AnnotationStore, LocalAnnotationBackend


@pytest.fixture(autouse=True)
def fresh_settings_singleton():
    SettingsManager.reset_instance()
    yield
    SettingsManager.reset_instance()


@pytest.fixture
def scripture():
    return FakeScripture()


@pytest.fixture
def reader():
    return Identity(uid="user-123", display_name="Reader", email="reader@example.com")


@pytest.fixture
def identities(reader):
    return FakeIdentityProvider(sign_in_identity=reader)


@pytest.fixture
def settings(tmp_path):
    return SettingsManager(str(tmp_path / "settings.json"))


@pytest.fixture
def local_store(tmp_path):
    return AnnotationStore(LocalAnnotationBackend(str(tmp_path / "flashcards.json")))
