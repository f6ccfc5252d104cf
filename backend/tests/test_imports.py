"""
Test Buddy - Package Import Tests
Every subpackage must import on its own, in a fresh interpreter
"""
import os
import subprocess
import sys

import pytest


@pytest.mark.parametrize("module", [
    "testbuddy.ai",
    "testbuddy.ai.quiz_generator",
    "testbuddy.services",
    "testbuddy.services.container",
    "testbuddy.api.v1",
    "testbuddy.main",
])
def test_module_imports_first(module):
    env = {**os.environ, "PYTHONPATH": os.pathsep.join(p for p in sys.path if p)}

    completed = subprocess.run(
        [sys.executable, "-c", f"import {module}"],
        capture_output=True,
        text=True,
        env=env,
        timeout=120,
    )

    assert completed.returncode == 0, completed.stderr
