import os as _os
import sys

import pytest

# Ensure project root is importable (so `import amgr`, `import cli` work without installing)
_project_root = _os.path.dirname(_os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from amgr.orchestrator import Workload  # noqa: E402
from amgr.settings import load_settings  # noqa: E402

from fakes import FakeOrchestrator  # noqa: E402


@pytest.fixture
def fake_orchestrator():
    return FakeOrchestrator(
        [
            Workload(id="/myapp", host_paths=("/data/models/mymodel-latest",)),
            Workload(id="/myapp-txt", artifact_uris=("http://files.example/data.txt",)),
            Workload(id="/backend/another-txt", artifact_uris=("http://other.example/static/data.txt",)),
        ]
    )


@pytest.fixture
def settings(tmp_path):
    managed = tmp_path / "managed"
    managed.mkdir()
    return load_settings(
        {
            "dir": str(managed),
            "db_path": str(tmp_path / "events.db"),
            "queue_capacity": 10,
            "restart_batch_count": 1,
            "restart_batch_timeout_s": 0.2,
            "marathon_query_interval_s": 0.1,
        },
        environ={},
    )
