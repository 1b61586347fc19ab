"""kicd relay.

Receives signed build notifications and rolls the built image out to
Kubernetes Deployments and StatefulSets labelled for the repository.
"""

__version__ = "0.1.0"
