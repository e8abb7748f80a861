"""AutoRange: converge on resource limits for a running workload.

A watcher observes periodic usage samples of one container, narrows a
bracket of plausible memory limits and a stable CPU share as samples
arrive, then commits the result through the Docker Engine update call.
"""

__all__ = [
    "config",
    "core",
    "data",
    "errors",
    "utils",
]
