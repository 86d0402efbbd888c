"""Mirror sidecar.

Watches a remote git branch, mirrors a subtree of it into a local folder,
and restarts a supervised child process whenever the mirrored content
changes. Updates are triggered by periodic polling or by a webhook.
"""

__version__ = "0.1.0"
