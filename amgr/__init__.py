"""Artifact Manager (amgr).

Accepts uploaded artifacts into a shared directory and restarts only the
orchestrator workloads that depend on the changed path:
 - a dependency registry rebuilt by a background poller
 - a bounded change queue fed by the upload endpoint
 - a restart coordinator that batches changes by count or time
"""

__version__ = "0.3.0"
