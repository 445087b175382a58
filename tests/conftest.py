from __future__ import annotations

import json

import pytest

from breweri_core import DEFAULT_CASK_URL, DEFAULT_FORMULA_URL, CommandResult, Settings

CATALOG = ("wget", "curl", "jq")


class FakeRunner:
    """Stands in for CommandRunner: canned results keyed by argv."""

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.calls = []

    def run_sync(self, cmd_list, token=None):
        self.calls.append(list(cmd_list))
        if token is not None:
            token.check()
        return self.responses.get(tuple(cmd_list), CommandResult(1, "", "unexpected command"))

    def count(self, *prefix):
        return sum(1 for call in self.calls if tuple(call[: len(prefix)]) == prefix)


class ListScheduler:
    """Collects scheduled callbacks; tests drain them on their own thread."""

    def __init__(self):
        self.pending = []

    def schedule(self, func, *args):
        self.pending.append((func, args))

    def drain(self):
        pending, self.pending = self.pending, []
        for func, args in pending:
            func(*args)
        return len(pending)


def catalog_responses():
    return {
        ("curl", "-s", DEFAULT_FORMULA_URL): CommandResult(
            0, json.dumps([{"name": "wget"}, {"name": "curl"}]), ""
        ),
        ("curl", "-s", DEFAULT_CASK_URL): CommandResult(0, json.dumps([{"full_token": "jq"}]), ""),
        ("brew", "info", "wget"): CommandResult(0, "wget: stable 1.24.5\nLicense: GPL-3.0-or-later\n", ""),
        ("brew", "info", "curl"): CommandResult(0, "curl: stable 8.7.1\n  keg-only\n", ""),
    }


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner(catalog_responses())


@pytest.fixture
def scheduler() -> ListScheduler:
    return ListScheduler()


@pytest.fixture
def settings(tmp_path) -> Settings:
    settings = Settings(environ={})
    settings.prefix = str(tmp_path)
    settings.info_debounce = 0
    (tmp_path / "Cellar" / "curl").mkdir(parents=True)
    (tmp_path / "Caskroom").mkdir()
    return settings
