"""
projflow: project tracking for an architecture firm.

The lifecycle engine lives in projflow.engine; open it with
projflow.engine.bootstrap.open_engine().
"""
