"""Services - external collaborators and the pipeline orchestrator."""
