"""
Services Layer

- standings_engine, bracket_progressor, bracket_builder: pure computations over
  in-memory snapshots; no I/O, no mutation of their inputs
- progression_service: loads snapshots, calls the pure services, persists results
"""
