"""Graph store access — the configuration item / relation model and its clients.

The sync engine depends only on the :class:`ResourceClient` contract:
- Models: CIs, relations, states and fixed attribute schemas
- Clients: a local file-backed store and a CMS REST adapter
- Schemas: built-in ``mgmt.*`` classes plus YAML-declared component classes
"""

from packsync.cms.client import Direction, ResourceClient
from packsync.cms.models import ConfigurationItem, Relation, State

__all__ = [
    "ConfigurationItem",
    "Direction",
    "Relation",
    "ResourceClient",
    "State",
]
