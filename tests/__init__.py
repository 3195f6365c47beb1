"""
Cloudup Test Suite

- Unit tests for the differ, graph, locks, settings and targets
- Executor tests against an in-memory world
- Task tests against in-memory AWS and GCE clouds
- Pipeline and CLI tests loading desired-state files
"""
