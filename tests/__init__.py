"""Test package for the N-back trainer.

Pure logic lives in the ``*_core`` modules; the ``*_headless_sim`` modules
drive presentations and sessions on a fake clock. Run ``pytest`` from the
project root.
"""
