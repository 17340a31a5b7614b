from stackinsights.config import DEFAULT_AFFINITY_TEAMS, load_settings


def test_defaults_when_environment_is_empty(monkeypatch) -> None:
    for name in (
        "DATA_BACKEND",
        "SIGNAL_SINK",
        "KAFKA_MAX_BLOCK_MS",
        "DEDUP_WINDOW_SECONDS",
        "DEDUP_SCOPE",
        "AFFINITY_TEAMS",
        "TRACKED_USER_IDS",
        "STACKINSIGHTS_STORAGE_PREFIX",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = load_settings()

    assert settings.storage_prefix == "user_behavior_"
    assert settings.data_backend == "memory"
    assert settings.signal_sink == "log"
    assert settings.kafka_max_block_ms == 1000
    assert settings.dedup_window_seconds == 2.0
    assert settings.dedup_scope == "user"
    assert settings.affinity_teams == DEFAULT_AFFINITY_TEAMS
    assert settings.tracked_user_ids == "all"
    assert settings.single_tenant_user is None


def test_invalid_values_fall_back(monkeypatch) -> None:
    monkeypatch.setenv("DATA_BACKEND", "redis")
    monkeypatch.setenv("DEDUP_WINDOW_SECONDS", "soon")
    monkeypatch.setenv("DEDUP_SCOPE", "tab")
    monkeypatch.setenv("RECOMMENDATION_LIMIT", "many")

    settings = load_settings()

    assert settings.data_backend == "memory"
    assert settings.dedup_window_seconds == 2.0
    assert settings.dedup_scope == "user"
    assert settings.recommendation_limit == 6


def test_csv_settings_are_parsed(monkeypatch) -> None:
    monkeypatch.setenv("AFFINITY_TEAMS", " Platform, Data ,,")
    monkeypatch.setenv("TRACKED_USER_IDS", "u1")
    monkeypatch.setenv("DEDUP_SCOPE", "GLOBAL")

    settings = load_settings()

    assert settings.affinity_teams == frozenset({"Platform", "Data"})
    assert settings.tracked_user_ids == frozenset({"u1"})
    assert settings.single_tenant_user == "u1"
    assert settings.dedup_scope == "global"
