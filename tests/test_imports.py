# test_imports.py
import importlib

import pytest


@pytest.mark.parametrize("module", [
    "notify_guard.cli.main",
    "notify_guard.config.loader",
    "notify_guard.core.dispatcher",
    "notify_guard.core.fanout",
    "notify_guard.core.preferences",
    "notify_guard.core.quota",
    "notify_guard.core.vapid",
    "notify_guard.logging_config",
    "notify_guard.sdk",
    "notify_guard.storage.repository",
])
def test_module_imports(module):
    assert importlib.import_module(module) is not None
