"""NTM Command: distributed artillery and radar coordination.

Nodes discover each other through heartbeats on a lossy broadcast network,
exchange fire commands with acknowledgments, and share radar contacts as
alerts.  See :class:`ntm.node.NodeContext` for the per-node entry point.
"""

__version__ = "0.1.0"
