"""Personal trading journal.

Modules:
    models: Trade records and DataFrame conversion
    storage: Local JSON and Supabase persistence backends
    trade_log: Trade CRUD, validation and derived fields
    csv_import: Bulk import from broker/template CSV files
    performance: Performance metrics and Monte Carlo simulation
    position_sizing: Position size and risk/reward calculator
    journal_entries: Per-trade journal entries
    discipline: Rules, daily check-ins, goals and habits
    playbook: Strategy playbook grouped by asset
    market_data: Quotes, candles and realtime trade stream
    export: CSV export and PDF reports
    dashboard: Flask web dashboard
"""

__version__ = "0.1.0"
