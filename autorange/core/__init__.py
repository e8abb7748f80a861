"""Core primitives: bounded series, memory and CPU predictors, the watcher
state machine and the limit applier.

Nothing in here talks to Docker; collaborators are passed in as callables.
"""
