"""Stage execution, service pipelines and the run orchestrator."""
