"""packsync — synchronize declarative deployment packs into a CMS graph store.

A pack is a named, versioned template (platform, components, relations and
per-environment overrides). packsync resolves which version an upload maps
to and reconciles the remote CI/relation graph with the local definition.
"""

__version__ = "0.1.0"
