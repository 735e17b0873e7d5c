"""
Engines are things that run around the reactor (see `ktail.reactor`)
to help it to function at full strength, but are not part of it.
For example, the per-container log tailers, the login, the logging setup.
"""
