"""
core — Constants, configuration, step state machine and the run journal.
"""
