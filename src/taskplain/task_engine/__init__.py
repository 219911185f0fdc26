"""Task graph engine: hierarchy, validation, ranking, and dispatch.

Documents are loaded by :class:`TaskStore`; everything else in this package
is a pure computation over the loaded set.
"""
