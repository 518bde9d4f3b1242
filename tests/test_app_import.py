import importlib


def test_api_import_registers_trial_routes(monkeypatch):
    monkeypatch.delenv("TRIAL_STORE_DB", raising=False)
    mod = importlib.import_module("api.main")
    importlib.reload(mod)
    paths = {route.path for route in mod.app.routes}
    assert {"/api/trial", "/api/complete", "/api/session/{session_id}", "/health"} <= paths
