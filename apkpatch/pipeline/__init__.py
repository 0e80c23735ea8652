"""
pipeline — Step model, runner, interactive pause and the patch pipeline.

The runner walks an ordered list of steps against one shared context,
forwarding progress lines from streaming steps to a single event sink.
"""
