"""On-disk tree model and snapshot/delta store."""
