"""
General-purpose helpers not related to the tool itself
(neither to the reactor nor to the engines nor to the structs),
which are used to prepare and control the runtime environment.

Utilities do not depend on anything in the tool. For most cases,
they do not even implement any entities or behaviours of the domain
of log tailing, but rather some unrelated low-level patterns.
"""
