"""SubTracker.

Subscription and personal-finance tracking: monthly aggregation, analytics,
anomaly detection, cash-flow projection and CSV import/export.  See
``api.py`` for the tool server, ``import_export.py`` for the command line
and ``seed_db.py`` to load the sample month.
"""
