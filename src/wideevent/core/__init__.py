"""Domain logic for wide-event ingestion, querying and sampling.

Nothing in this package performs I/O directly; collaborators are reached
through the protocols in ``wideevent.core.ports``.
"""
