"""
The reactor groups all modules to watch the pods & to react to their changes.

The watch-events of pods are turned into the start & stop of the tailers,
one tailer per container of every interesting pod.
"""
