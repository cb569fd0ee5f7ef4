"""Service layer: conversation state, orchestration and external collaborators."""
