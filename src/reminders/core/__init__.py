"""Reconciliation core: change detection, the engine, debouncing and bindings."""
