import pytest

from flow_builder.credentials import (
    ChainedCredentialStore,
    EnvCredentialStore,
    StaticCredentialStore,
    SupabaseCredentialStore,
)
from flow_builder.secrets import SecretNotFoundError, clear_secrets_cache, get_secret


@pytest.fixture(autouse=True)
def _fresh_cache():
    clear_secrets_cache()
    yield
    clear_secrets_cache()


def test_env_wins_over_files(tmp_secrets_dir, monkeypatch):
    (tmp_secrets_dir / ".env").write_text("OPENAI_API_KEY=from-dotenv\n", encoding="utf-8")
    (tmp_secrets_dir / "OPENAI_API_KEY").write_text("from-file\n", encoding="utf-8")
    monkeypatch.setenv("OPENAI_API_KEY", "from-env")
    assert get_secret("OPENAI_API_KEY") == "from-env"


def test_dotenv_then_secret_file(tmp_secrets_dir, monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    (tmp_secrets_dir / ".env").write_text("OPENAI_API_KEY=from-dotenv\n", encoding="utf-8")
    (tmp_secrets_dir / "ANTHROPIC_API_KEY").write_text("  from-file \n", encoding="utf-8")

    assert get_secret("OPENAI_API_KEY") == "from-dotenv"
    assert get_secret("ANTHROPIC_API_KEY") == "from-file"


def test_missing_secret(tmp_secrets_dir, monkeypatch):
    monkeypatch.delenv("N8N_API_KEY", raising=False)
    assert get_secret("N8N_API_KEY") is None
    with pytest.raises(SecretNotFoundError):
        get_secret("N8N_API_KEY", required=True)


def test_env_store_maps_provider_names(tmp_secrets_dir, monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant")
    monkeypatch.setenv("N8N_BASE_URL", "https://n8n.local/")
    monkeypatch.setenv("N8N_API_KEY", "n8n")
    store = EnvCredentialStore()

    assert store.get_api_key("claude") == "sk-ant"
    assert store.get_api_key("unknown") is None
    target = store.get_deployment_target()
    assert target.base_url == "https://n8n.local"
    assert target.api_key == "n8n"


def test_chained_store_first_non_empty_wins():
    first = StaticCredentialStore({"openai": ""})
    second = StaticCredentialStore({"openai": "sk-2"}, base_url="https://b")
    chained = ChainedCredentialStore([first, None, second])

    assert chained.get_api_key("openai") == "sk-2"
    assert chained.get_base_url() == "https://b"
    assert chained.get_api_key("claude") is None

    first.set_api_key("openai", "sk-1")
    assert chained.get_api_key("openai") == "sk-1"
    first.set_api_key("openai", None)
    assert chained.get_api_key("openai") == "sk-2"


class _Res:
    def __init__(self, data):
        self.data = data


class _Query:
    def __init__(self, client, table):
        self.client = client
        self.table = table
        self.filters = {}

    def select(self, _):
        return self

    def eq(self, key, value):
        self.filters[key] = value
        return self

    def limit(self, _):
        return self

    def execute(self):
        if self.client.fail:
            raise RuntimeError("supabase down")
        self.client.filters.append((self.table, dict(self.filters)))
        return _Res(self.client.tables.get(self.table, []))


class _SBClient:
    def __init__(self, tables, fail=False):
        self.tables = tables
        self.fail = fail
        self.filters = []

    def table(self, name):
        return _Query(self, name)


def test_supabase_store_matches_provider_aliases():
    sb = _SBClient(
        {
            "api_keys": [
                {"provider": "OpenAI", "encrypted_key": "  "},
                {"provider": "Anthropic Claude", "encrypted_key": "sk-ant"},
                {"provider": "n8n", "encrypted_key": "n8n-key"},
            ],
            "profiles": [{"n8n_instance_url": "https://n8n.example.com"}],
        }
    )
    store = SupabaseCredentialStore(sb, user_id="u1")

    assert store.get_api_key("claude") == "sk-ant"
    assert store.get_api_key("openai") is None
    assert store.get_deployment_target().base_url == "https://n8n.example.com"
    assert ("api_keys", {"user_id": "u1"}) in sb.filters
    assert ("profiles", {"id": "u1"}) in sb.filters


def test_supabase_store_failure_reads_as_missing():
    store = SupabaseCredentialStore(_SBClient({}, fail=True), user_id="u1")
    assert store.get_api_key("openai") is None
    assert store.get_base_url() is None


def test_credential_store_is_abstract():
    from flow_builder.credentials import CredentialStore

    with pytest.raises(TypeError):
        CredentialStore()

    class _KeysOnly(CredentialStore):
        def get_api_key(self, provider):
            return "k"

    with pytest.raises(TypeError):
        _KeysOnly()
