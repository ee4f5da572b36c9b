"""Bootstrap Agent: keeps a single target application installed and current.

On every activation the update orchestrator waits for eligible connectivity,
reads the remote manifest, downloads and verifies the artifact, and hands it
to the platform installer, retrying until it succeeds.
"""

__version__ = "0.1.0"
