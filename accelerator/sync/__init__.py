"""Sync: the layer that materializes manifest entries into a target repository.

This package provides the primitives for:
- Drift classification: comparing installed, recorded and rendered content
- Merge strategies: reconciling rendered templates with existing files
- Provenance: the persisted record of what was installed, from which entry
- The install engine tying them together
"""
