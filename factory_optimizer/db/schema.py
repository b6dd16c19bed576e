"""SQLite Schema for Evaluation Memory

This module defines the SQLite schema that persists the best policy of each
Bayesian optimization run, so later runs under similar demand conditions can
warm-start from it.
"""

# Evaluation memory table - one row per accepted optimization run
CREATE_MEMORY_EVALUATIONS_TABLE = """
CREATE TABLE IF NOT EXISTS memory_evaluations (
    id                          INTEGER PRIMARY KEY AUTOINCREMENT,
    run_id                      TEXT NOT NULL UNIQUE,
    policy                      TEXT NOT NULL,  -- JSON of policy parameters
    fitness                     REAL NOT NULL,
    net_worth                   REAL NOT NULL,
    custom_demand_mean_1        REAL NOT NULL,
    custom_demand_std_dev_1     REAL NOT NULL,
    custom_demand_mean_2        REAL NOT NULL,
    custom_demand_std_dev_2     REAL NOT NULL,
    standard_demand_intercept   REAL NOT NULL,
    standard_demand_slope       REAL NOT NULL,
    total_iterations            INTEGER NOT NULL,
    sim_version                 TEXT NOT NULL,
    created_at                  TEXT DEFAULT (datetime('now', 'localtime'))
);
"""

# Create indexes
CREATE_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_memory_version ON memory_evaluations(sim_version);
CREATE INDEX IF NOT EXISTS idx_memory_fitness ON memory_evaluations(fitness);
"""

# Full schema for initialization
MEMORY_SCHEMA_SQL = f"""
-- Evaluation Memory Schema (SQLite)

{CREATE_MEMORY_EVALUATIONS_TABLE}

{CREATE_INDEXES}
"""


def get_memory_schema_statements():
    """Get individual schema statements for step-by-step execution.

    Returns:
        List of SQL statements to execute in order
    """
    return [
        CREATE_MEMORY_EVALUATIONS_TABLE,
        CREATE_INDEXES,
    ]
